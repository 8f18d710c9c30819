"""fileingest - ordered, cancellable file intake.

Turns user-selected files into an ordered collection of entries whose content
is loaded asynchronously, while keeping a parallel ``urls``/``names`` view in
sync for presentation code.
"""

__version__ = "0.1.0"
