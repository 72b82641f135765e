"""pyhpfem – hp-adaptive finite elements for nonlinear 1-D boundary value problems."""
__version__ = "0.1.0"
