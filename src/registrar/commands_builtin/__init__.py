"""Commands shipped with registrar; each module exposes ``create_command``."""
