import uuid

import shortuuid


def generate_shortuuid() -> str:
    """22-character URL-safe id used for customer accounts."""
    return shortuuid.uuid()


def generate_row_id() -> str:
    return str(uuid.uuid4())
