"""Tests for inkwell._errors."""

import pytest

from inkwell._errors import (
    ConfigError,
    ExecutionError,
    InkwellError,
    ParseError,
    ReactiveError,
    ValidationError,
)

ALL_ERRORS = (ConfigError, ParseError, ValidationError, ExecutionError, ReactiveError)


class TestErrorHierarchy:
    """All inkwell errors inherit from InkwellError."""

    def test_base_is_exception(self) -> None:
        assert issubclass(InkwellError, Exception)

    @pytest.mark.parametrize("error_cls", ALL_ERRORS)
    def test_inherits_from_base(self, error_cls: type[InkwellError]) -> None:
        assert issubclass(error_cls, InkwellError)

    def test_catch_all(self) -> None:
        for error_cls in ALL_ERRORS:
            with pytest.raises(InkwellError, match="boom"):
                raise error_cls("boom")

    def test_siblings_are_distinct(self) -> None:
        assert not issubclass(ParseError, ValidationError)
        assert not issubclass(ExecutionError, ReactiveError)
