from .model_file import ModelFileSpec, load_model, parse_model_file

__all__ = [
    "ModelFileSpec",
    "load_model",
    "parse_model_file",
]
