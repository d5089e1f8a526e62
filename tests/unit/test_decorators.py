"""
Unit tests for the kernel decorator.
"""

from __future__ import annotations

from pyoffload.decorators.kernel import kernel, kernel_name, kernel_vectorize


class TestKernelDecorator:
    """Tests for @kernel."""

    def test_bare_decorator(self) -> None:
        """Test the decorator without arguments."""

        @kernel
        def scale(i: int) -> int:
            return i * 2

        assert scale._kernel_meta == {"name": "scale", "vectorize": None}
        assert scale(3) == 6

    def test_with_arguments(self) -> None:
        """Test name and vectorize are recorded."""

        @kernel(name="custom", vectorize=False)
        def scale(i: int) -> int:
            return i

        assert kernel_name(scale) == "custom"
        assert kernel_vectorize(scale, None, True) is False

    def test_preserves_metadata(self) -> None:
        """Test functools.wraps keeps the original name and docstring."""

        @kernel
        def documented(i: int) -> None:
            """Docstring."""

        assert documented.__name__ == "documented"
        assert documented.__doc__ == "Docstring."
        assert documented._original_func.__name__ == "documented"


class TestHelpers:
    """Tests for kernel_name and kernel_vectorize."""

    def test_plain_function_name(self) -> None:
        """Test undecorated functions use their own name."""

        def plain(i: int) -> None:
            pass

        assert kernel_name(plain) == "plain"

    def test_lambda_name(self) -> None:
        """Test lambdas get a generic name."""
        assert kernel_name(lambda i: None) == "kernel"

    def test_vectorize_precedence(self) -> None:
        """Test explicit override beats decorator beats default."""

        @kernel(vectorize=True)
        def vectorized(i: int) -> None:
            pass

        def plain(i: int) -> None:
            pass

        assert kernel_vectorize(vectorized, False, False) is False
        assert kernel_vectorize(vectorized, None, False) is True
        assert kernel_vectorize(plain, None, False) is False
        assert kernel_vectorize(plain, None, True) is True
