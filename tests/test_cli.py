"""Tests for CLI interface."""

import json

import pytest
import yaml
from click.testing import CliRunner

from gitops_broker.cli.main import cli
from gitops_broker.models.instance import InstanceRecord, OperationState, OperationStatus
from tests.helpers import remote_file, remote_log, write_and_commit


@pytest.fixture
def runner():
    """Create CLI runner."""
    return CliRunner()


@pytest.fixture
def populated_store(store):
    """Working copy with one live and one deleted instance."""
    store.write_instance(InstanceRecord(id="alpha", service_definition_id="svc", plan_id="small"))
    store.write_instance(InstanceRecord(id="beta", service_definition_id="svc", plan_id="large", deleted=True))
    store.write_status("alpha", OperationStatus(status=OperationState.SUCCEEDED, description="deployment successful"))
    return store


class TestInspectionCommands:
    """Test list, show and version."""

    def test_version(self, runner):
        result = runner.invoke(cli, ['version'])

        assert result.exit_code == 0
        assert "gitops-broker CLI" in result.output
        assert "Version: 0.1.0" in result.output

    def test_list_table(self, runner, populated_store):
        result = runner.invoke(cli, ['list', str(populated_store.root)])

        assert result.exit_code == 0
        assert "alpha" in result.output
        assert "beta" in result.output
        assert "deployment successful" in result.output
        assert "preparing deployment" in result.output

    def test_list_json(self, runner, populated_store):
        result = runner.invoke(cli, ['list', str(populated_store.root), '--format', 'json'])

        assert result.exit_code == 0
        rows = json.loads(result.output)
        assert [row['id'] for row in rows] == ["alpha", "beta"]
        assert rows[0]['status'] == "succeeded"
        assert rows[1]['deleted'] is True

    def test_list_empty(self, runner, tmp_path):
        result = runner.invoke(cli, ['list', str(tmp_path)])

        assert result.exit_code == 0
        assert "No service instances found" in result.output

    def test_show_instance(self, runner, populated_store):
        result = runner.invoke(cli, ['show', 'alpha', str(populated_store.root)])

        assert result.exit_code == 0
        record_text, status_text = result.output.split("---\n")
        assert yaml.safe_load(record_text)['planId'] == "small"
        assert yaml.safe_load(status_text) == {'status': 'succeeded', 'description': 'deployment successful'}

    def test_show_missing_instance(self, runner, tmp_path):
        result = runner.invoke(cli, ['show', 'missing', str(tmp_path)])

        assert result.exit_code == 1
        assert "not found" in result.output


class TestUpdateCommand:
    """Test pipeline status reporting."""

    def test_update_status(self, runner, populated_store):
        result = runner.invoke(cli, [
            'update', 'alpha', str(populated_store.root), '--status', 'failed', '-d', 'quota exceeded'
        ])

        assert result.exit_code == 0
        assert populated_store.read_status("alpha") == OperationStatus(
            status=OperationState.FAILED, description="quota exceeded"
        )

    def test_update_unknown_instance(self, runner, populated_store):
        result = runner.invoke(cli, [
            'update', 'gamma', str(populated_store.root), '-s', 'succeeded', '-d', 'done'
        ])

        assert result.exit_code == 1
        assert not populated_store.instance_dir("gamma").exists()

    def test_update_rejects_unknown_state(self, runner, populated_store):
        result = runner.invoke(cli, [
            'update', 'alpha', str(populated_store.root), '-s', 'done', '-d', 'x'
        ])

        assert result.exit_code == 2


class TestGitCommands:
    """Test git pull and push."""

    def test_push_commits_with_cli_prefix(self, runner, populated_store, remote_repo):
        result = runner.invoke(cli, ['git', 'push', str(populated_store.root), '-m', 'Pipeline results'])

        assert result.exit_code == 0
        assert remote_log(remote_repo)[0] == "gitops-broker CLI: Pipeline results"
        assert "succeeded" in remote_file(remote_repo, "instances/alpha/status.yml")

    def test_push_without_changes(self, runner, synced_repo):
        result = runner.invoke(cli, ['git', 'push', str(synced_repo.path)])

        assert result.exit_code == 0
        assert "Nothing to commit" in result.output

    def test_push_uses_given_author(self, runner, populated_store, synced_repo):
        result = runner.invoke(cli, [
            'git', 'push', str(populated_store.root), '--name', 'Pipeline', '--email', 'ci@example.com'
        ])

        assert result.exit_code == 0
        assert synced_repo.repo.head.commit.author.email == "ci@example.com"

    def test_pull(self, runner, synced_repo, clone_factory):
        other = clone_factory("other")
        write_and_commit(other, "instances/x/instance.yml", "id: x\nserviceDefinitionId: s\nplanId: p\n", "Add x")
        other.push()

        result = runner.invoke(cli, ['git', 'pull', str(synced_repo.path)])

        assert result.exit_code == 0
        assert (synced_repo.path / "instances" / "x" / "instance.yml").is_file()

    def test_pull_outside_repository(self, runner, tmp_path):
        result = runner.invoke(cli, ['git', 'pull', str(tmp_path)])

        assert result.exit_code == 1
        assert "Pull failed" in result.output
