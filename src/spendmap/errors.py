"""Exceptions raised by the storage layer."""


class StoreError(Exception):
    """A store operation could not be completed."""


class KeywordExistsError(StoreError):
    """The keyword is already defined for this user."""

    def __init__(self, keyword):
        self.keyword = keyword
        super().__init__(f"Keyword already exists: '{keyword}'")


class UnknownCityError(StoreError):
    """The referenced canonical city is not registered."""

    def __init__(self, city):
        self.city = city
        super().__init__(f"Unknown city: '{city}'")
