"""Camera frame post-processing: motion detection, negation, classification, pose decoding and detection tracking."""

__version__ = "0.1.0"