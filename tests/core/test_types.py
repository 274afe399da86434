from core.types import ErrorCategory


class TestErrorCategory:
    def test_values(self):
        assert ErrorCategory.TRANSIENT.value == "transient"
        assert ErrorCategory.PERMANENT.value == "permanent"
        assert ErrorCategory.UNKNOWN.value == "unknown"

    def test_member_count(self):
        assert len(ErrorCategory) == 3

    def test_same_enum_as_errors_package(self):
        from core.errors import ErrorCategory as ReExported

        assert ReExported is ErrorCategory
