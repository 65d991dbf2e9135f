from .artifact import assemble_artifact, load_artifact, read_artifact, validate_artifact, write_artifact
from .text_index import FIELD_WEIGHTS, TextIndex

__all__ = [
    "FIELD_WEIGHTS",
    "TextIndex",
    "assemble_artifact",
    "load_artifact",
    "read_artifact",
    "validate_artifact",
    "write_artifact",
]
