"""kubemirror: in-memory mirrors of Kubernetes collections via list-then-watch."""

from kubemirror.mirror import ResourceMirror

__version__ = "0.1.0"

__all__ = ["ResourceMirror", "__version__"]
