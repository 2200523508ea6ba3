class RepositoryNotFoundError(Exception):
    def __init__(self, owner: str, name: str) -> None:
        super().__init__(f"Repository {owner}/{name} not found")
        self.owner = owner
        self.name = name


class InvalidRequestError(ValueError):
    """A request that is well-formed but asks for something unsupported."""
