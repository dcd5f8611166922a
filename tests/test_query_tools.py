"""Tests for plotdeck.query building blocks."""

import pytest
import tempfile
from pathlib import Path

from plotdeck.query import (
    Block,
    Configuration,
    ConfigurationLoader,
    DatabaseConnectionError,
    DatabaseSession,
    ExpansionError,
    FileAccessError,
    Located,
    ParseError,
    PlotdeckError,
    QueryExecutionError,
    parse_markdown,
)
from plotdeck.query.loader import read_text
from plotdeck.query.models import resolve_path
from plotdeck.query.session import quote_identifier, quote_string
from plotdeck.query.variables import expand_variables


def current_setting(session, name):
    """Read a DuckDB setting through the session's connection."""
    return session.connection.execute(
        f"SELECT current_setting({quote_string(name)})"
    ).fetchone()[0]


SAMPLE_MARKDOWN = """# Title

Some text.

```plotdeck
query: SELECT 1
```

```sql
SELECT 2
```
"""


@pytest.fixture
def session():
    """Open in-memory DuckDB session, closed after the test."""
    session = DatabaseSession()
    session.open(None, {}, {"x": "1"})
    yield session
    session.close()


class TestParseMarkdown:
    """Tests for splitting Markdown into blocks."""

    def test_top_level_blocks(self):
        """Test blocks come out in document order with kinds and lines."""
        blocks = parse_markdown(SAMPLE_MARKDOWN)
        assert [b.kind for b in blocks] == ["heading", "paragraph", "fence", "fence"]
        assert [b.line for b in blocks] == [1, 3, 5, 9]

    def test_fence_info_and_body(self):
        """Test fence info string and inner text."""
        fence = parse_markdown(SAMPLE_MARKDOWN)[2]
        assert fence.info == "plotdeck"
        assert fence.body == "query: SELECT 1\n"
        assert fence.content.startswith("```plotdeck")

    def test_nested_list_is_one_block(self):
        """Test list items stay inside their top-level block."""
        blocks = parse_markdown("- a\n- b\n  - c\n\nafter\n")
        assert [b.kind for b in blocks] == ["bullet_list", "paragraph"]

    def test_metadata_bag(self):
        """Test get_data/set_data on a block."""
        block = Block(kind="paragraph", line=1, content="x")
        assert block.get_data("path") is None
        block.set_data("path", "a.md")
        assert block.get_data("path") == "a.md"
        assert block.to_dict()["path"] == "a.md"


class TestVariables:
    """Tests for ${name} expansion."""

    def test_expand(self):
        """Test references are replaced."""
        assert expand_variables("FROM ${t} WHERE y=${y}", {"t": "sales", "y": "2024"}) \
            == "FROM sales WHERE y=2024"

    def test_not_recursive(self):
        """Test values are inserted verbatim."""
        assert expand_variables("${a}", {"a": "${b}", "b": "x"}) == "${b}"

    def test_missing_variable(self):
        """Test unbound name raises with location."""
        with pytest.raises(ExpansionError) as exc_info:
            expand_variables("${missing}", {}, "a.md", 3)
        assert exc_info.value.name == "missing"
        assert exc_info.value.message_with_location == "a.md:3: Undefined variable: missing"


class TestConfigurationLoader:
    """Tests for ConfigurationLoader."""

    def test_fenced_block(self):
        """Test a plotdeck fence becomes a located configuration."""
        loader = ConfigurationLoader()
        block = parse_markdown(SAMPLE_MARKDOWN)[2]
        config = loader.try_load_block("a.md", block, {})
        assert config is not None
        assert config.query.value == "SELECT 1"
        assert (config.query.path, config.query.line) == ("a.md", 6)

    def test_other_blocks_are_not_configurations(self):
        """Test ordinary fences and paragraphs return None."""
        loader = ConfigurationLoader()
        blocks = parse_markdown(SAMPLE_MARKDOWN)
        assert loader.try_load_block("a.md", blocks[1], {}) is None
        assert loader.try_load_block("a.md", blocks[3], {}) is None

    def test_custom_block_names(self):
        """Test block names are configurable and case-insensitive."""
        loader = ConfigurationLoader(["Report"])
        block = parse_markdown("```REPORT\nquery: SELECT 1\n```\n")[0]
        assert loader.try_load_block("a.md", block, {}).query.value == "SELECT 1"

    def test_single_line_instruction(self):
        """Test <?plotdeck ... ?> on one line is read as a flow mapping."""
        loader = ConfigurationLoader()
        block = parse_markdown("<?plotdeck query: SELECT 1 ?>\n")[0]
        config = loader.try_load_block("a.md", block, {})
        assert config.query.value == "SELECT 1"

    def test_multi_line_instruction(self):
        """Test indented multi-line instruction body."""
        loader = ConfigurationLoader()
        source = "<?plotdeck\n  query: SELECT 2\n  data_source: x.db\n?>\n"
        block = parse_markdown(source)[0]
        config = loader.try_load_block("a.md", block, {})
        assert config.query.value == "SELECT 2"
        assert config.query.line == 2
        assert config.data_source.value == "x.db"

    def test_expansion_at_parse_time(self):
        """Test every string scalar is expanded."""
        loader = ConfigurationLoader()
        config = loader.load("a.md", "query: SELECT * FROM ${t}\ndb_config:\n  threads: ${n}\n", 1,
                             {"t": "sales", "n": "2"})
        assert config.query.value == "SELECT * FROM sales"
        assert config.settings == {"threads": "2"}

    def test_expansion_error_location(self):
        """Test unresolved name points at the scalar's line."""
        loader = ConfigurationLoader()
        with pytest.raises(ExpansionError) as exc_info:
            loader.load("a.md", "output: x.json\nquery: SELECT ${missing}\n", 10, {})
        assert exc_info.value.line == 11
        assert exc_info.value.path == "a.md"

    def test_parameters(self):
        """Test parameter declarations keep order and optional fields."""
        loader = ConfigurationLoader()
        config = loader.load(
            "a.md",
            "parameters:\n  - name: a\n    default: 1\n  - name: b\n  - description: no name\n",
            1, {}
        )
        parameters = config.parameters.value
        assert [p.name.value if p.name else None for p in parameters] == ["a", "b", None]
        assert parameters[0].default.value == "1"
        assert parameters[1].default is None

    def test_multiple_documents_merge(self):
        """Test later documents win and a later parameters list replaces the earlier one."""
        loader = ConfigurationLoader()
        config = loader.load(
            "a.yaml",
            "parameters: [{name: a}]\nquery: SELECT 1\n---\nparameters: [{name: b}]\nquery: SELECT 2\n",
            1, {}
        )
        assert [p.name.value for p in config.parameters.value] == ["b"]
        assert config.query.value == "SELECT 2"

    def test_multiple_documents_merge_mappings_by_key(self):
        """Test db_config keys from each document are all kept."""
        loader = ConfigurationLoader()
        config = loader.load(
            "a.yaml",
            "db_config:\n  threads: '1'\n---\ndb_config:\n  memory_limit: 1GB\n",
            1, {}
        )
        assert config.settings == {"threads": "1", "memory_limit": "1GB"}
        assert config.db_config.value["memory_limit"].line == 5

    def test_multiple_documents_append_renderer_lists(self):
        """Test series colors are concatenated across documents."""
        loader = ConfigurationLoader()
        config = loader.load(
            "a.yaml",
            "series_colors: [red]\n---\nseries_colors: [blue]\n",
            1, {}
        )
        assert config.to_dict() == {"series_colors": ["red", "blue"]}

    def test_other_keys_kept_as_options(self):
        """Test renderer settings are preserved."""
        loader = ConfigurationLoader()
        config = loader.load("a.md", "chart_type: bar\nquery: SELECT 1\n", 1, {})
        assert config.options["chart_type"].value == "bar"
        assert config.to_dict() == {"query": "SELECT 1", "chart_type": "bar"}

    def test_invalid_yaml(self):
        """Test malformed YAML raises ParseError."""
        loader = ConfigurationLoader()
        with pytest.raises(ParseError):
            loader.load("a.md", "query: [unclosed\n", 1, {})

    def test_non_mapping_rejected(self):
        """Test a top-level sequence is rejected."""
        loader = ConfigurationLoader()
        with pytest.raises(ParseError, match="Mapping is expected"):
            loader.load("a.md", "- a\n- b\n", 1, {})

    def test_wrong_directive_type(self):
        """Test a mapping where a string is expected."""
        loader = ConfigurationLoader()
        with pytest.raises(ParseError, match="String is expected"):
            loader.load("a.md", "query:\n  a: b\n", 1, {})

    def test_empty_source(self):
        """Test empty YAML gives an empty configuration."""
        loader = ConfigurationLoader()
        config = loader.load("a.yaml", "", 1, {})
        assert config.query is None
        assert config.to_dict() == {}


class TestReadText:
    """Tests for file reading."""

    def test_missing_file(self):
        """Test unreadable file raises FileAccessError at the reference."""
        with pytest.raises(FileAccessError) as exc_info:
            read_text(Located("a.md", 4, "/nonexistent/file.md"))
        assert exc_info.value.message_with_location == \
            "a.md:4: Cannot read file: /nonexistent/file.md"

    def test_reads_utf8(self):
        """Test file contents are returned."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "a.md"
            path.write_text("# Überschrift\n", encoding="utf-8")
            assert read_text(Located(None, 0, str(path))) == "# Überschrift\n"


class TestModels:
    """Tests for models and errors."""

    def test_empty_configuration(self):
        """Test default configuration has no directives."""
        config = Configuration()
        assert config.output is None
        assert config.settings == {}

    def test_resolve_path(self):
        """Test paths resolve against the declaring file's directory."""
        item = Located("docs/a.md", 2, "out/deck.json")
        assert resolve_path(item, "/base") == "/base/docs/out/deck.json"

    def test_message_with_location(self):
        """Test location formatting variants."""
        assert PlotdeckError(None, None, "boom").message_with_location == "boom"
        assert PlotdeckError("a.md", 0, "boom").message_with_location == "a.md: boom"
        assert PlotdeckError("a.md", 5, "boom").message_with_location == "a.md:5: boom"

    def test_cause_chained(self):
        """Test wrapped cause is available."""
        cause = OSError("disk")
        error = PlotdeckError("a.md", 1, "boom", cause)
        assert error.cause is cause
        assert error.__cause__ is cause


class TestQuoting:
    """Tests for SQL quoting."""

    def test_quote_identifier(self):
        assert quote_identifier('a"b') == '"a""b"'

    def test_quote_string(self):
        assert quote_string("it's") == "'it''s'"


class TestDatabaseSession:
    """Tests for DatabaseSession."""

    def test_variables_bound_on_open(self, session):
        """Test getvariable sees variables bound at open."""
        results = list(session.execute(Located("a.md", 1, "SELECT getvariable('x') AS v")))
        assert results[0].column_names == ["v"]
        assert results[0].rows == [("1",)]

    def test_quoted_variable_values(self, session):
        """Test values with quotes round-trip."""
        session.update_variables({"it's": "o'clock"})
        results = list(session.execute(Located(None, 0, "SELECT getvariable('it''s') AS v")))
        assert results[0].rows == [("o'clock",)]

    def test_multiple_statements(self, session):
        """Test one result set per statement, in order."""
        results = list(session.execute(Located(None, 0, "SELECT 1 AS a; SELECT 2 AS b;")))
        assert [r.column_names for r in results] == [["a"], ["b"]]
        assert [r.rows for r in results] == [[(1,)], [(2,)]]

    def test_statement_side_effects_ordered(self, session):
        """Test later statements see earlier statements' effects."""
        sql = "CREATE TABLE t (i INTEGER); INSERT INTO t VALUES (7); SELECT i FROM t"
        results = list(session.execute(Located(None, 0, sql)))
        assert len(results) == 3
        assert results[-1].rows == [(7,)]

    def test_query_error(self, session):
        """Test failing statement raises located QueryExecutionError."""
        with pytest.raises(QueryExecutionError) as exc_info:
            list(session.execute(Located("a.md", 7, "SELECT * FROM missing_table")))
        assert exc_info.value.line == 7
        assert "missing_table" in exc_info.value.message

    def test_update_known_setting(self, session):
        """Test recognized settings are applied."""
        session.update({"threads": "1"})
        assert int(current_setting(session, "threads")) == 1

    def test_update_unknown_setting_skipped(self, session):
        """Test unknown settings are skipped silently."""
        before = current_setting(session, "threads")
        session.update({"unknown_key": "1"})
        assert current_setting(session, "threads") == before

    def test_reopen_replaces_connection(self, session):
        """Test opening again disposes the previous connection."""
        first = session.connection
        session.open(None, {}, {"y": "2"})
        assert session.connection is not first
        results = list(session.execute(Located(None, 0, "SELECT getvariable('y')")))
        assert results[0].rows == [("2",)]

    def test_open_failure(self):
        """Test unusable data source raises DatabaseConnectionError."""
        session = DatabaseSession()
        location = Located("a.md", 3, "/nonexistent/dir/db.duckdb")
        with pytest.raises(DatabaseConnectionError) as exc_info:
            session.open(location.value, {}, {}, location)
        assert exc_info.value.line == 3
        assert not session.is_open

    def test_close_is_idempotent(self):
        """Test closing twice is harmless."""
        session = DatabaseSession()
        session.ensure_open({})
        assert session.is_open
        session.close()
        session.close()
        assert not session.is_open
