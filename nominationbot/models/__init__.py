from .nominee import Nominee


def register_models() -> list:
    return [Nominee]
