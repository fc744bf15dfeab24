"""hvm-bench: compare HVM runtime timings across git revisions."""

__version__ = "0.1.0"
