"""Tests for the built-in code validator and the validate/fix/revalidate flow."""

from appgen.code_validator import (
    UNCLOSED_STRING,
    BasicCodeValidator,
    ValidationIssue,
    ValidationResult,
    should_validate,
    validate_file,
)


class TestShouldValidate:
    def test_source_extensions(self):
        assert should_validate("src/App.tsx")
        assert should_validate("lib/util.js")
        assert not should_validate("src/index.css")
        assert not should_validate("package.json")


class TestBasicCodeValidator:
    """Test unclosed-string detection and fixing."""

    def test_valid_code(self):
        content = "const a = 'x';\nconst b = \"it's\";\n// don't worry\nconst c = `multi\nline`;"
        assert BasicCodeValidator().validate(content, "a.ts").valid is True

    def test_escaped_quote_is_not_a_terminator(self):
        assert BasicCodeValidator().validate("const a = 'it\\'s';", "a.ts").valid is True

    def test_detects_unclosed_string_with_line(self):
        result = BasicCodeValidator().validate("const a = 1;\nconst b = 'oops;", "a.ts")

        assert result.valid is False
        assert len(result.errors) == 1
        assert result.errors[0].type == UNCLOSED_STRING
        assert result.errors[0].line == 2
        assert "single" in result.errors[0].message

    def test_auto_fix_closes_string_before_semicolon(self):
        validator = BasicCodeValidator()
        content = "const b = 'oops;\nconst c = \"more"
        fixed = validator.auto_fix(content, validator.validate(content, "a.ts").errors)

        assert fixed == "const b = 'oops';\nconst c = \"more\""
        assert validator.validate(fixed, "a.ts").valid is True


class TestValidateFile:
    """Test the validate, auto-fix, re-validate sequence."""

    def test_valid_file_untouched(self):
        outcome = validate_file("a.ts", "const a = 1;", BasicCodeValidator())

        assert outcome.content == "const a = 1;"
        assert outcome.errors_found == 0
        assert outcome.remaining == []

    def test_fixable_file(self):
        outcome = validate_file("a.ts", "const a = 'x;", BasicCodeValidator())

        assert outcome.content == "const a = 'x';"
        assert outcome.errors_found == 1
        assert outcome.auto_fixed == 1
        assert outcome.remaining == []

    def test_unfixable_defects_remain(self):
        class StubbornValidator:
            def validate(self, content, path):
                return ValidationResult(valid=False, errors=[ValidationIssue(type="NESTED_FUNCTION", message="nope")])

            def auto_fix(self, content, errors):
                return content

        outcome = validate_file("a.ts", "x", StubbornValidator())

        assert outcome.errors_found == 1
        assert outcome.auto_fixed == 0
        assert [e.type for e in outcome.remaining] == ["NESTED_FUNCTION"]

    def test_revalidates_once(self):
        calls = []

        class CountingValidator:
            def validate(self, content, path):
                calls.append(content)
                return ValidationResult(valid=False, errors=[ValidationIssue(type="X", message="x", line=1)])

            def auto_fix(self, content, errors):
                return content + "!"

        outcome = validate_file("a.ts", "x", CountingValidator())

        assert calls == ["x", "x!"]
        assert outcome.content == "x!"
        assert len(outcome.remaining) == 1
