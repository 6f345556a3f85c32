"""Tests for path/content validation and the project-level output validator."""
import pytest

from sitebuilder.core import validator
from sitebuilder.core.extractor import render_files
from sitebuilder.core.validator import (
    check_script_syntax,
    find_orphaned_components,
    validate_content,
    validate_files,
    validate_output,
    validate_path,
)
from sitebuilder.models import CandidateFile, ModeFlags

from conftest import (
    APP_JS,
    APP_JS_NO_IMPORT,
    COMPONENT_JS,
    INDEX_HTML,
    STYLES_CSS,
    scaffold_reply,
)

NEW_PROJECT = ModeFlags(require_scaffold=True, require_files=True, has_existing_files=False)
EDIT_PROJECT = ModeFlags(require_scaffold=False, require_files=True, has_existing_files=True)
QUESTION = ModeFlags(require_scaffold=False, require_files=False, informational=True)


def _file(path, content, language="text"):
    return CandidateFile(path=path, content=content, language=language)


class TestValidatePath:

    @pytest.mark.parametrize("path,reason", [
        ("", "empty path"),
        ("   ", "empty path"),
        ("/etc/passwd", "absolute path not allowed"),
        ("\\windows\\x.js", "absolute path not allowed"),
        ("C:\\temp\\x.js", "absolute path not allowed"),
        ("../secrets.js", "path traversal not allowed"),
        ("../../etc/passwd", "path traversal not allowed"),
        ("src/../../x.js", "path traversal not allowed"),
        ("src/a|b.js", "invalid characters in path"),
        ("src/a\tb.js", "invalid characters in path"),
        ("src/", "path has no filename"),
        (".env", "hidden files not allowed"),
        ("src/.secret.js", "hidden files not allowed"),
    ])
    def test_rejected(self, path, reason):
        assert validate_path(path) == (None, reason)

    def test_normalized(self):
        assert validate_path("./src//components\\card.js") == ("src/components/card.js", None)

    def test_internal_prefix_allowed(self):
        assert validate_path(".sitebuilder-state.json") == (".sitebuilder-state.json", None)


class TestValidateContent:

    def test_placeholder_line(self, settings):
        assert validate_content("styles.css", "body {\n...\n}", "css", settings).startswith("placeholder content")

    def test_ellipsis_alone_is_placeholder_not_short(self, settings):
        assert validate_content("a.js", "...", "javascript", settings) == "placeholder content: '...'"

    def test_lone_ellipsis_markdown_is_placeholder(self, settings):
        assert validate_content("notes.md", "...", "markdown", settings).startswith("placeholder content")

    def test_todo_implement_rejected(self, settings):
        content = "function save() {\n  // TODO: implement persistence\n}"
        assert validate_content("a.js", content, "javascript", settings) == "unimplemented TODO/FIXME marker"

    def test_plain_todo_allowed(self, settings):
        content = "function save() {\n  // TODO: debounce later\n  return 1;\n}"
        assert validate_content("a.js", content, "javascript", settings) is None

    def test_too_short(self, settings):
        assert validate_content("a.css", "a{}", "css", settings).startswith("content too short")

    def test_unbalanced_braces(self, settings):
        content = "function f() {{{{{ return 1; }"
        assert validate_content("a.js", content, "javascript", settings) == "unbalanced braces (+4)"

    def test_small_imbalance_tolerated(self, settings):
        content = "const a = { b: { c: 1 };\nconst d = [1, 2;"
        assert validate_content("a.js", content, "javascript", settings) is None

    def test_unbalanced_parentheses(self, settings):
        content = "call(((((((x);"
        assert validate_content("a.js", content, "javascript", settings) == "unbalanced parentheses (+6)"

    def test_markup_needs_root(self, settings):
        reason = validate_content("index.html", "<div>Hello world</div>", "html", settings)
        assert reason == "markup missing doctype or <html> root"
        assert validate_content("index.html", INDEX_HTML, "html", settings) is None

    def test_invalid_json(self, settings):
        reason = validate_content("data.json", '{"a": 1, "b": }', "json", settings)
        assert reason.startswith("invalid JSON")
        assert validate_content("data.json", '{"a": 1, "b": 2}', "json", settings) is None


class TestScriptSyntaxCheck:

    def test_missing_node_is_skipped(self, monkeypatch):
        monkeypatch.setattr(validator.shutil, "which", lambda name: None)
        res = check_script_syntax("var x = ;")
        assert res["ok"] and res["skipped"]

    def test_syntax_error_rejects_classic_script(self, settings, monkeypatch):
        settings.script_check = True
        monkeypatch.setattr(validator.shutil, "which", lambda name: "/usr/bin/node")
        monkeypatch.setattr(validator, "_run_cmd",
                            lambda cmd, cwd=None, timeout=10: (1, "x.js:1\nvar x = ;\nSyntaxError: Unexpected token ';'"))
        reason = validate_content("src/legacy.js", "var x = ;\nvar y = 2;", "javascript", settings)
        assert reason == "javascript syntax error: SyntaxError: Unexpected token ';'"

    def test_modules_not_checked(self, settings, monkeypatch):
        settings.script_check = True
        calls = []
        monkeypatch.setattr(validator, "check_script_syntax", lambda *a, **kw: calls.append(a) or {"ok": False, "output": ""})
        assert validate_content("src/app.js", APP_JS, "javascript", settings) is None
        assert calls == []

    def test_tool_failure_is_not_a_syntax_error(self, monkeypatch):
        monkeypatch.setattr(validator.shutil, "which", lambda name: "/usr/bin/node")
        monkeypatch.setattr(validator, "_run_cmd", lambda cmd, cwd=None, timeout=10: (124, "validator timeout"))
        res = check_script_syntax("var x = 1;")
        assert res["ok"] and res["skipped"]


class TestScaffold:

    def test_missing_reports_exactly_absent_files(self, settings):
        verdict = validate_files([_file("index.html", INDEX_HTML, "html")], NEW_PROJECT, settings)
        assert not verdict.ok
        assert verdict.missing == ["styles.css", "src/app.js"]
        assert verdict.required == ["index.html", "styles.css", "src/app.js"]
        assert verdict.reason == "missing required files: styles.css, src/app.js"

    def test_none_of_the_scaffold_present(self, settings):
        readme = _file("README.md", "# Weather dashboard\n\nShows the forecast.", "markdown")
        verdict = validate_files([readme], NEW_PROJECT, settings)
        assert not verdict.ok
        assert verdict.missing == ["index.html", "styles.css", "src/app.js"]

    def test_no_valid_files_on_new_project(self, settings):
        verdict = validate_files([_file("../x.js", "let x = 1;")], NEW_PROJECT, settings)
        assert not verdict.ok
        assert verdict.reason == "no valid files"
        assert verdict.missing == ["index.html", "styles.css", "src/app.js"]
        assert [r.reason for r in verdict.rejected] == ["path traversal not allowed"]

    def test_complete_scaffold_passes(self, settings):
        verdict = validate_output(scaffold_reply(), NEW_PROJECT, settings)
        assert verdict.ok, verdict.reason
        assert [f.path for f in verdict.files] == [
            "index.html", "styles.css", "src/app.js", "src/components/todo-list.js",
        ]
        assert verdict.missing == []

    def test_edit_mode_has_no_required_files(self, settings):
        verdict = validate_files([_file("styles.css", STYLES_CSS, "css")], EDIT_PROJECT, settings)
        assert verdict.ok
        assert verdict.required == []

    def test_edit_mode_with_no_files_passes(self, settings):
        assert validate_output("I could not find anything to change.", EDIT_PROJECT, settings).ok

    def test_informational_with_no_files_passes(self, settings):
        verdict = validate_output("Flexbox lays out items along one axis.", QUESTION, settings)
        assert verdict.ok
        assert verdict.files == []

    def test_rejected_files_do_not_sink_the_rest(self, settings):
        text = scaffold_reply() + "\nFile: notes.js\n```js\n// TODO: implement notes\n```\n"
        verdict = validate_output(text, NEW_PROJECT, settings)
        assert verdict.ok
        assert [r.path for r in verdict.rejected] == ["notes.js"]
        assert "notes.js" not in [f.path for f in verdict.files]


class TestOrphanedComponents:

    def test_unimported_component_fails_then_passes_when_imported(self, settings):
        files = [
            _file("index.html", INDEX_HTML, "html"),
            _file("styles.css", STYLES_CSS, "css"),
            _file("src/app.js", APP_JS_NO_IMPORT, "javascript"),
            _file("src/components/todo-list.js", COMPONENT_JS, "javascript"),
        ]
        verdict = validate_files(files, NEW_PROJECT, settings)
        assert not verdict.ok
        assert verdict.reason == "components not imported by src/app.js: src/components/todo-list.js"
        assert [(r.path, r.reason) for r in verdict.rejected] == [("src/components/todo-list.js", "not imported")]

        files[2] = _file("src/app.js", APP_JS, "javascript")
        assert validate_files(files, NEW_PROJECT, settings).ok

    def test_reference_forms(self):
        comp = _file("src/components/card.js", COMPONENT_JS)
        for ref in ("import './components/card.js';", "import 'components/card.js';",
                    "import '/src/components/card.js';"):
            app = _file("src/app.js", ref + "\nconsole.log('ready');")
            assert find_orphaned_components([app, comp]) == [], ref

    def test_no_app_script_means_no_orphans(self):
        assert find_orphaned_components([_file("src/components/card.js", COMPONENT_JS)]) == []

    def test_missing_and_orphan_reasons_joined(self, settings):
        files = [
            _file("index.html", INDEX_HTML, "html"),
            _file("src/app.js", APP_JS_NO_IMPORT, "javascript"),
            _file("src/components/todo-list.js", COMPONENT_JS, "javascript"),
        ]
        verdict = validate_files(files, NEW_PROJECT, settings)
        assert verdict.reason == (
            "missing required files: styles.css; "
            "components not imported by src/app.js: src/components/todo-list.js"
        )


class TestIdempotence:

    def test_same_text_same_verdict(self, settings):
        text = scaffold_reply(app_js=APP_JS_NO_IMPORT)
        assert validate_output(text, NEW_PROJECT, settings) == validate_output(text, NEW_PROJECT, settings)

    def test_revalidating_accepted_files_accepts_them_again(self, settings):
        first = validate_output(scaffold_reply(), NEW_PROJECT, settings)
        second = validate_output(render_files(first.files), NEW_PROJECT, settings)
        assert second.ok
        assert second.files == first.files
