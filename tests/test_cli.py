"""Tests for the strata command line."""

import pytest
from click.testing import CliRunner

from stratatm.cli import main
from stratatm.data import YAMLStorage
from stratatm.version import VERSION


@pytest.fixture
def runner():
    return CliRunner(env={'STRATATM_OWNER': 'alice', 'STRATATM_DATA_DIR': None})

@pytest.fixture
def strata(runner, tmp_path):
    """Invoke the CLI against a store in tmp_path; fails the test on a non-zero exit."""
    def invoke(*args, input=None, expect=0):
        result = runner.invoke(main, ['--data-dir', str(tmp_path), *args], input=input)
        assert result.exit_code == expect, result.output
        return result
    return invoke

def _ids_by_title(tmp_path):
    storage = YAMLStorage(tmp_path / "store.yml")
    return {item.title: item.id for item in storage.items.values()}


class TestBasics:
    """Setup commands."""

    def test_version(self, runner):
        result = runner.invoke(main, ['--version'])
        assert result.exit_code == 0
        assert VERSION in result.output

    def test_init(self, strata, tmp_path):
        result = strata('init', '--owner', 'bob')
        assert "Store initialized" in result.output
        assert (tmp_path / "store.yml").exists()
        assert "owner_id: bob" in (tmp_path / "config.yml").read_text()

        again = strata('init')
        assert "already exists" in again.output

    def test_empty_list(self, strata):
        assert "No items yet" in strata('list').output

    def test_corrupt_store(self, strata, tmp_path):
        (tmp_path / "store.yml").write_text("items: [unclosed\n")
        result = strata('list', expect=1)
        assert "YAML syntax error" in result.output

    def test_schema(self, strata, tmp_path):
        strata('schema', str(tmp_path / "schema.json"))
        assert '"schema_version"' in (tmp_path / "schema.json").read_text()


class TestItems:
    """Adding, editing and listing items."""

    def test_add_and_list_tree(self, strata, tmp_path):
        strata('add', 'Launch')
        ids = _ids_by_title(tmp_path)
        strata('add', 'Beta', '-p', ids['Launch'])
        strata('add', 'GA', '-p', ids['Launch'][:8])

        output = strata('list').output
        lines = output.splitlines()
        assert "Launch" in lines[0]
        assert lines[1].startswith("  ") and "Beta" in lines[1]
        assert "GA" in lines[2]

    def test_show(self, strata, tmp_path):
        strata('add', 'Launch')
        strata('add', 'Beta', '-p', _ids_by_title(tmp_path)['Launch'], '-d', 'Invite only')
        output = strata('show', _ids_by_title(tmp_path)['Beta']).output
        assert "Launch" in output
        assert "Invite only" in output
        assert "Task" in output
        assert "Actionable" in output

    def test_edit_type(self, strata, tmp_path):
        strata('add', 'Solo')
        item_id = _ids_by_title(tmp_path)['Solo']
        strata('edit', item_id, '--type', 'Mission')
        assert "(pinned)" in strata('show', item_id).output
        strata('edit', item_id, '--type', 'auto')
        assert "Ambition" in strata('show', item_id).output

    def test_blank_title_fails(self, strata, tmp_path):
        strata('add', 'Solo')
        result = strata('edit', _ids_by_title(tmp_path)['Solo'], '-t', '  ', expect=1)
        assert "Title must not be empty" in result.output

    def test_unknown_ref(self, strata):
        result = strata('show', 'nope', expect=1)
        assert "No item matches" in result.output

    def test_move_before(self, strata, tmp_path):
        strata('add', 'Launch')
        root = _ids_by_title(tmp_path)['Launch']
        strata('add', 'Beta', '-p', root)
        strata('add', 'GA', '-p', root)
        ids = _ids_by_title(tmp_path)

        strata('move', ids['GA'], '--before', ids['Beta'])
        storage = YAMLStorage(tmp_path / "store.yml")
        assert storage.items[ids['GA']].position == 0
        assert storage.items[ids['Beta']].position == 1

    def test_move_options_conflict(self, strata, tmp_path):
        strata('add', 'A')
        strata('add', 'B')
        ids = _ids_by_title(tmp_path)
        strata('move', ids['A'], '--after', ids['B'], '--position', '0', expect=2)

    def test_rm_cascade(self, strata, tmp_path):
        strata('add', 'Launch')
        strata('add', 'Beta', '-p', _ids_by_title(tmp_path)['Launch'])
        result = strata('rm', _ids_by_title(tmp_path)['Launch'], '--cascade', input='y\n')
        assert "Deleted 2 item(s)" in result.output
        assert _ids_by_title(tmp_path) == {}

    def test_rm_aborted(self, strata, tmp_path):
        strata('add', 'Keep')
        strata('rm', _ids_by_title(tmp_path)['Keep'], input='n\n', expect=1)
        assert list(_ids_by_title(tmp_path)) == ['Keep']


class TestBlocking:
    """Dependencies from the command line."""

    def test_block_and_done(self, strata, tmp_path):
        strata('add', 'Design')
        strata('add', 'Build')
        ids = _ids_by_title(tmp_path)
        strata('block', ids['Build'], ids['Design'])

        refused = strata('done', ids['Build'], expect=1)
        assert "blocked" in refused.output
        assert "⛔" in strata('list').output
        assert [line for line in strata('list', '--blocked').output.splitlines()
                if line.strip()][0].count("Build") == 1

        strata('done', ids['Design'])
        strata('done', ids['Build'])
        assert "Build" in strata('list', '--done').output
        assert strata('list', '--todo').output.strip() == ""

    def test_unblock(self, strata, tmp_path):
        strata('add', 'Design')
        strata('add', 'Build')
        ids = _ids_by_title(tmp_path)
        strata('block', ids['Build'], ids['Design'])
        assert "removed" in strata('unblock', ids['Build'], ids['Design']).output
        assert "No such dependency" in strata('unblock', ids['Build'], ids['Design']).output

    def test_wait_and_nowait(self, strata, tmp_path):
        strata('add', 'Later')
        item_id = _ids_by_title(tmp_path)['Later']
        assert "Blocked until" in strata('wait', item_id, 'in', '3', 'days').output
        assert "⏳" in strata('list').output
        assert "Date gate removed" in strata('nowait', item_id).output
        assert "No date gate" in strata('nowait', item_id).output

    def test_wait_unparseable(self, strata, tmp_path):
        strata('add', 'Later')
        result = strata('wait', _ids_by_title(tmp_path)['Later'], 'someday', expect=1)
        assert "Could not understand date" in result.output
