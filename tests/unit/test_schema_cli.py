"""
Unit tests for the schema CLI tool.
"""

import json

import pytest
import yaml

from docshape.errors import SchemaDefinitionError
from docshape.tools import schema_cli
from docshape.tools.schema_cli import SchemaCLI, load_descriptor, main


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the root logger untouched while main() runs."""
    monkeypatch.setattr(schema_cli, "setup_logging", lambda: None)


def run(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestSchemaCLI:
    """Tests for the SchemaCLI class."""

    def test_compile_json(self):
        output = json.loads(SchemaCLI().compile({"title": "string!"}, name="Post"))
        assert output["name"] == "Post"
        assert list(output["schema"]["fields"]) == ["title", "createdAt", "updatedAt"]
        assert output["fingerprint"].startswith("sha256:")

    def test_compile_yaml(self):
        output = yaml.safe_load(SchemaCLI(output_format="yaml").compile({"email": "email!!"}))
        assert output["features"]["indexes"][0]["name"] == "email_1"

    def test_tokens(self):
        table = json.loads(SchemaCLI().tokens())
        assert table["string!"]["required"] is True
        assert table["userRef"]["ref"] == "User"

    def test_template(self):
        output = json.loads(SchemaCLI().template("product"))
        assert output["name"] == "Product"


class TestLoadDescriptor:
    """Tests for load_descriptor()."""

    def test_yaml_with_fields(self, tmp_path):
        path = tmp_path / "user.yaml"
        path.write_text("name: User\noptions:\n  timestamps: false\nfields:\n  name: string!\n")
        assert load_descriptor(str(path)) == ("User", {"name": "string!"}, {"timestamps": False})

    def test_bare_json(self, tmp_path):
        path = tmp_path / "post.json"
        path.write_text(json.dumps({"title": "string!"}))
        assert load_descriptor(str(path)) == (None, {"title": "string!"}, None)

    def test_non_mapping_raises(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- string\n")
        with pytest.raises(SchemaDefinitionError, match="must contain a mapping"):
            load_descriptor(str(path))


class TestMain:
    """Tests for the command-line entry point."""

    def test_compile_file(self, tmp_path, capsys):
        path = tmp_path / "user.yaml"
        path.write_text("name: User\nfields:\n  name: string!\n  email: email!!\n")
        assert run(["compile", str(path)]) == 0
        output = json.loads(capsys.readouterr().out)
        assert output["name"] == "User"

    def test_name_flag_wins(self, tmp_path, capsys):
        path = tmp_path / "user.yaml"
        path.write_text("name: User\nfields:\n  name: string!\n")
        assert run(["compile", str(path), "--name", "Member", "--format", "yaml"]) == 0
        assert yaml.safe_load(capsys.readouterr().out)["name"] == "Member"

    def test_bad_descriptor_exits_1(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text("price:\n  type: string\n  min: 1\n")
        assert run(["compile", str(path)]) == 1
        assert capsys.readouterr().err.startswith("Schema error: price:")

    def test_tokens(self, capsys):
        assert run(["tokens"]) == 0
        assert "email!!" in json.loads(capsys.readouterr().out)

    def test_template(self, capsys):
        assert run(["template", "order", "--format", "yaml"]) == 0
        assert yaml.safe_load(capsys.readouterr().out)["name"] == "Order"

    def test_unknown_template_rejected(self):
        assert run(["template", "invoice"]) == 2
