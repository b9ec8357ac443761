"""PakeForge: a backend for packaging web apps as desktop apps with pake.

PakeForge keeps a store of packaging projects, compiles their configuration
into pake command lines and runs builds while streaming the tool's output.
"""

from pakeforge.__version__ import __version__
