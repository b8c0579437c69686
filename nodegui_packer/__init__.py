"""nodegui-packer.

A small build utility that packages a NodeGUI application, the ``qode``
runtime and its npm dependencies into a self-contained directory with a
native launcher.
"""

__all__: list[str] = ["__version__"]

__version__: str = "0.1.0"
