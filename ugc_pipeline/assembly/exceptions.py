"""
Assembly exceptions.
"""


class AssemblyError(Exception):
    """Timeline could not be built or rendered."""

    def __init__(self, message: str, clip_id: str = None):
        self.message = message
        self.clip_id = clip_id
        super().__init__(message)
