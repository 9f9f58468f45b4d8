"""Keys that identify an endpoint inside a store."""


def _sanitize(value: str) -> str:
    value = value.lower().strip()
    for character in "/_., ":
        value = value.replace(character, "-")
    return value


def convert_group_and_endpoint_name_to_key(group_name: str, endpoint_name: str) -> str:
    """Build the store key for an endpoint from its group and name."""
    return f"{_sanitize(group_name)}_{_sanitize(endpoint_name)}"