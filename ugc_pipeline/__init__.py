"""
UGC ad video pipeline.

Turns a product, an avatar and optional demo footage into a short
vertical ad: a director plans it, Gemini and Veo generate the media,
MoviePy assembles the final cut.
"""
__version__ = "0.1.0"
