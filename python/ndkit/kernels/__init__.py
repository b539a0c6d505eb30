"""
Kernel records for ndkit.

Each module defines ctypes kernel records (see ndkit.kernel_builder.BaseKernel)
for one operation family:

    memory       - raw address helpers shared by all kernels
    assignment   - copies and conversions
    arithmetic   - binary and unary numeric operations
    comparison   - ordering and equality, including tuple comparison
    compound     - dst = dst op src / dst = src op dst adapters
    reduction    - folding a fixed dimension through a compound child
    elwise       - broadcasting loops over fixed and var dimensions
    string       - substring search
    sort         - in-place sort through a child comparison
    indirection  - pointer dereferencing adapter
    compose      - two kernels chained through an intermediate buffer

Submodules are imported on use; they depend on ndkit.types, which in turn
builds kernels lazily.
"""
