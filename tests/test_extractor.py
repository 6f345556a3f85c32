"""Tests for the file block extractor."""
from sitebuilder.core import extractor
from sitebuilder.core.extractor import (
    StreamingExtractor,
    extract_completed_files,
    extract_files,
    extract_with_diagnostics,
    render_files,
)
from sitebuilder.models import CandidateFile


def _paths(files):
    return [f.path for f in files]


class TestMarkers:

    def test_marker_then_fence(self):
        text = "Intro text\n\nFile: src/app.js\n```javascript\nconsole.log('hi');\n```\nOutro"
        files = extract_files(text)
        assert files == [CandidateFile(path="src/app.js", content="console.log('hi');", language="javascript")]

    def test_marker_variants(self):
        text = "\n".join([
            "Path - a.css", "```css", "a { color: red; }", "```",
            "**File: `b.js`**", "```js", "let b = 1;", "```",
            "<!-- File: c.html -->", "```html", "<html></html>", "```",
            "// File: d.js", "```", "let d = 2;", "```",
            "/* Path: e.css */", "```css", "e { margin: 0; }", "```",
        ])
        files = extract_files(text)
        assert _paths(files) == ["a.css", "b.js", "c.html", "d.js", "e.css"]
        assert files[1].language == "javascript"
        assert files[3].language == "javascript"

    def test_path_is_normalized(self):
        files = extract_files("File: ./src\\components//card.js\n```js\nexport const x = 1;\n```")
        assert _paths(files) == ["src/components/card.js"]

    def test_filename_in_fence_info(self):
        files = extract_files("```js src/util.js\nexport const y = 2;\n```\n```styles.css\nbody {}\n```")
        assert _paths(files) == ["src/util.js", "styles.css"]
        assert files[1].language == "css"

    def test_marker_inside_fence_is_content(self):
        text = "File: README.md\n```markdown\nFile: not-a-file.js\n```"
        files = extract_files(text)
        assert _paths(files) == ["README.md"]
        assert files[0].content == "File: not-a-file.js"


class TestDefaultPaths:

    def test_unmarked_blocks_use_language_defaults(self):
        text = "```html\n<!DOCTYPE html>\n```\n```css\nbody {}\n```\n```ts\nlet a = 1;\n```"
        assert _paths(extract_files(text)) == ["index.html", "styles.css", "src/app.js"]

    def test_unmarked_ts_block_is_tagged_as_javascript(self):
        files = extract_files("```ts\nconst total = items.length;\n```")
        assert [(f.path, f.language) for f in files] == [("src/app.js", "javascript")]

    def test_marked_ts_block_keeps_its_tag(self):
        files = extract_files("File: src/types.ts\n```ts\nexport type Id = string;\n```")
        assert files[0].language == "typescript"

    def test_unmarked_unknown_language_dropped(self):
        text = "```markdown\n# Notes\n```\n```bash\nnpm start\n```\n```\nplain\n```"
        assert extract_files(text) == []

    def test_empty_block_produces_nothing(self):
        assert extract_files("File: empty.js\n```js\n```") == []

    def test_marker_applies_across_prose(self):
        # the pending path applies to the next block
        files = extract_files("File: x.css\nsome prose\n```css\nx {}\n```")
        assert _paths(files) == ["x.css"]


class TestDuplicatesAndTruncation:

    def test_last_duplicate_wins_first_position_kept(self):
        text = (
            "File: a.js\n```js\nlet v = 1;\n```\n"
            "File: b.css\n```css\nb {}\n```\n"
            "File: a.js\n```js\nlet v = 2;\n```\n"
        )
        result = extract_with_diagnostics(text)
        assert _paths(result.files) == ["a.js", "b.css"]
        assert result.files[0].content == "let v = 2;"
        assert result.duplicates == ["a.js"]

    def test_unclosed_fence_kept_by_extract_files(self):
        text = "File: a.css\n```css\na {}\n```\nFile: b.js\n```js\nlet partial = "
        result = extract_with_diagnostics(text)
        assert result.unclosed == "b.js"
        assert _paths(result.files) == ["a.css", "b.js"]
        assert _paths(extract_completed_files(text)) == ["a.css"]

    def test_content_right_stripped_only(self):
        files = extract_files("File: a.py\n```python\n    indented = True\n\n\n```")
        assert files[0].content == "    indented = True"


class TestRender:

    def test_render_then_extract_returns_same_files(self):
        files = [
            CandidateFile(path="index.html", content="<!DOCTYPE html>\n<html></html>", language="html"),
            CandidateFile(path="styles.css", content="body {\n  margin: 0;\n}", language="css"),
            CandidateFile(path="src/app.js", content="const a = `x`;\nexport default a;", language="javascript"),
        ]
        assert extract_files(render_files(files)) == files

    def test_render_format(self):
        out = render_files([CandidateFile(path="a.js", content="let a;", language="javascript")])
        assert out == "File: a.js\n```javascript\nlet a;\n```\n"


def _feed_in_chunks(scanner, text, size):
    out = []
    for i in range(0, len(text), size):
        out.extend(scanner.feed(text[i:i + size]))
    return out + scanner.finish()


class TestStreamingExtractor:

    TEXT = (
        "Intro prose.\n"
        "File: index.html\n```html\n<!DOCTYPE html>\n<html></html>\n```\n"
        "**File: styles.css**\n```css\nbody { margin: 0; }\n```\n"
        "File: src/app.js\n```javascript\nconst fence = '```js';\nlet n = 1;\n```"
    )

    def test_chunked_feed_matches_whole_text(self):
        for size in (1, 5, 13, len(self.TEXT)):
            got = _feed_in_chunks(StreamingExtractor(), self.TEXT, size)
            assert got == extract_completed_files(self.TEXT), size

    def test_block_returned_when_its_closing_line_arrives(self):
        scanner = StreamingExtractor()
        assert scanner.feed("File: a.css\n```css\na { color: red; }\n") == []
        assert scanner.feed("``") == []
        done = scanner.feed("`\nFile: b.js\n")
        assert _paths(done) == ["a.css"]

    def test_unclosed_block_not_returned(self):
        scanner = StreamingExtractor()
        scanner.feed("File: a.js\n```js\nlet partial = ")
        assert scanner.finish() == []

    def test_each_line_is_scanned_once(self, monkeypatch):
        pushed = []
        original = extractor._LineMachine.push

        def counting(self, line):
            pushed.append(line)
            return original(self, line)

        monkeypatch.setattr(extractor._LineMachine, "push", counting)
        body = "\n".join(f"const v{i} = {i};" for i in range(3000))
        text = f"File: src/app.js\n```javascript\n{body}\n```\n"

        files = _feed_in_chunks(StreamingExtractor(), text, 12)

        assert _paths(files) == ["src/app.js"]
        assert len(pushed) == text.count("\n")
