"""Tests for ruleset, branch and workflow provisioning."""

import json

import pytest
import yaml

from mqprobe.github_clients.base import GitHubAPIError, GitHubNotFoundError
from mqprobe.interfaces import FileCommit, FileContent, Ruleset
from mqprobe.provisioner import (
    CHECK_NAME,
    CONFLICT_MARKER,
    WORKFLOW_COMMIT_MESSAGE,
    WORKFLOW_PATH,
    MergeQueuePolicy,
    build_ruleset,
    build_workflow,
    create_main_branch,
    render_workflow,
    ruleset_name,
    upsert_ruleset,
    upsert_workflow,
)

PREFIX = "merge-queue/mergeMethod/MERGE"


@pytest.fixture
def policy():
    """Fixture providing a typical merge-queue policy."""
    return MergeQueuePolicy(
        merge_method="MERGE",
        min_entries_to_merge=1,
        max_entries_to_merge=2,
        max_entries_to_build=1,
        min_entries_to_merge_wait_minutes=1,
        grouping_strategy="ALLGREEN",
    )


@pytest.mark.unit
class TestMergeQueuePolicy:
    """Tests for MergeQueuePolicy."""

    def test_to_parameters(self, policy):
        """Test the rule parameters use the platform's field names."""
        assert policy.to_parameters() == {
            "merge_method": "MERGE",
            "min_entries_to_merge": 1,
            "max_entries_to_merge": 2,
            "max_entries_to_build": 1,
            "min_entries_to_merge_wait_minutes": 1,
            "grouping_strategy": "ALLGREEN",
            "check_response_timeout_minutes": 5,
        }

    def test_unknown_merge_method(self):
        """Test merge methods are validated."""
        with pytest.raises(ValueError, match="merge method"):
            MergeQueuePolicy("FAST_FORWARD", 1, 1, 1, 1, "ALLGREEN")

    def test_unknown_grouping_strategy(self):
        """Test grouping strategies are validated."""
        with pytest.raises(ValueError, match="grouping strategy"):
            MergeQueuePolicy("MERGE", 1, 1, 1, 1, "ANYGREEN")


@pytest.mark.unit
class TestBuildRuleset:
    """Tests for build_ruleset."""

    def test_ruleset_body(self, policy):
        """Test the ruleset targets the queue branch with both rules and the bypass actor."""
        body = build_ruleset(PREFIX, policy, bypass_actor_id=1178750, check_integration_id=15368)

        assert body["name"] == f"Merge queue ({PREFIX}/main)"
        assert body["target"] == "branch"
        assert body["enforcement"] == "active"
        assert body["conditions"]["ref_name"]["include"] == [f"refs/heads/{PREFIX}/main"]
        assert [rule["type"] for rule in body["rules"]] == [
            "merge_queue",
            "required_status_checks",
        ]
        assert body["rules"][0]["parameters"] == policy.to_parameters()
        status_checks = body["rules"][1]["parameters"]["required_status_checks"]
        assert status_checks == [{"context": CHECK_NAME, "integration_id": 15368}]
        assert body["bypass_actors"] == [
            {"actor_type": "Integration", "actor_id": 1178750, "bypass_mode": "always"}
        ]

    def test_ruleset_name(self):
        """Test ruleset names are derived from the branch prefix."""
        assert ruleset_name("mutated-main") == "Merge queue (mutated-main/main)"


@pytest.mark.unit
class TestUpsertRuleset:
    """Tests for upsert_ruleset."""

    def test_creates_when_absent(self, mock_gateway, policy):
        """Test a ruleset is created when none carries the name."""
        mock_gateway.list_rulesets.return_value = [Ruleset(id=1, name="Something else")]
        mock_gateway.create_ruleset.return_value = Ruleset(id=9, name=ruleset_name(PREFIX))

        ruleset_id = upsert_ruleset(
            mock_gateway, PREFIX, policy, bypass_actor_id=1, check_integration_id=2
        )

        assert ruleset_id == 9
        mock_gateway.create_ruleset.assert_called_once()
        mock_gateway.update_ruleset.assert_not_called()

    def test_updates_when_present(self, mock_gateway, policy):
        """Test an existing ruleset with the same name is updated in place."""
        mock_gateway.list_rulesets.return_value = [Ruleset(id=4, name=ruleset_name(PREFIX))]
        mock_gateway.update_ruleset.return_value = Ruleset(id=4, name=ruleset_name(PREFIX))

        ruleset_id = upsert_ruleset(
            mock_gateway, PREFIX, policy, bypass_actor_id=1, check_integration_id=2
        )

        assert ruleset_id == 4
        mock_gateway.create_ruleset.assert_not_called()
        args = mock_gateway.update_ruleset.call_args.args
        assert args[0] == 4
        assert args[1]["name"] == ruleset_name(PREFIX)

    def test_repeated_upsert_leaves_one_ruleset(self, mock_gateway, policy):
        """Test upserting twice creates once and then updates."""
        created = Ruleset(id=5, name=ruleset_name(PREFIX))
        mock_gateway.create_ruleset.return_value = created
        mock_gateway.update_ruleset.return_value = created
        mock_gateway.list_rulesets.side_effect = [[], [created]]

        upsert_ruleset(mock_gateway, PREFIX, policy, bypass_actor_id=1, check_integration_id=2)
        upsert_ruleset(mock_gateway, PREFIX, policy, bypass_actor_id=1, check_integration_id=2)

        assert mock_gateway.create_ruleset.call_count == 1
        assert mock_gateway.update_ruleset.call_count == 1


@pytest.mark.unit
class TestWorkflow:
    """Tests for the workflow document."""

    def test_workflow_structure(self):
        """Test triggers, the skip condition and the step order."""
        workflow = build_workflow(PREFIX, 15)

        assert workflow["on"] == ["pull_request", "merge_group"]
        job = workflow["jobs"][CHECK_NAME]
        assert job["if"] == "github.event_name != 'pull_request'"
        steps = job["steps"]
        assert steps[0] == {"uses": "actions/checkout@v4", "with": {"fetch-depth": 0}}
        assert steps[1] == {"run": "sleep 15"}
        assert f"origin/{PREFIX}/main..HEAD" in steps[2]["run"]
        assert CONFLICT_MARKER in steps[2]["run"]

    def test_render_is_deterministic_json(self):
        """Test rendering is compact JSON that also parses as YAML."""
        rendered = render_workflow(PREFIX, 5)

        assert rendered == render_workflow(PREFIX, 5)
        assert json.loads(rendered) == build_workflow(PREFIX, 5)
        assert yaml.safe_load(rendered)["jobs"][CHECK_NAME]["steps"][1] == {"run": "sleep 5"}
        assert ", " not in rendered
        assert ": " not in rendered

    def test_wait_seconds_change_content(self):
        """Test different CI durations yield different documents."""
        assert render_workflow(PREFIX, 5) != render_workflow(PREFIX, 30)


@pytest.mark.unit
class TestUpsertWorkflow:
    """Tests for upsert_workflow."""

    def test_creates_when_missing(self, mock_gateway):
        """Test a missing file is written without a revision marker."""
        mock_gateway.get_file.side_effect = GitHubNotFoundError("Not Found", status_code=404)

        commit = upsert_workflow(mock_gateway, PREFIX, "main", 10)

        assert commit.commit_sha == "c0ffee1234567"
        mock_gateway.get_file.assert_called_once_with(WORKFLOW_PATH, f"{PREFIX}/main")
        mock_gateway.put_file.assert_called_once_with(
            WORKFLOW_PATH,
            WORKFLOW_COMMIT_MESSAGE,
            render_workflow(PREFIX, 10),
            f"{PREFIX}/main",
            sha=None,
        )

    def test_updates_with_existing_sha(self, mock_gateway):
        """Test an existing file's revision marker is carried forward."""
        mock_gateway.get_file.return_value = FileContent(WORKFLOW_PATH, sha="blob0", content="{}")

        upsert_workflow(mock_gateway, PREFIX, "feature-2", 5)

        assert mock_gateway.put_file.call_args.kwargs["sha"] == "blob0"
        assert mock_gateway.put_file.call_args.args[3] == f"{PREFIX}/feature-2"

    def test_other_read_errors_propagate(self, mock_gateway):
        """Test read failures other than 404 abort without writing."""
        mock_gateway.get_file.side_effect = GitHubAPIError("Server Error", status_code=500)

        with pytest.raises(GitHubAPIError, match="Server Error"):
            upsert_workflow(mock_gateway, PREFIX, "main")

        mock_gateway.put_file.assert_not_called()

    def test_stale_sha_write_fails(self, mock_gateway):
        """Test a write rejected for a stale revision marker propagates."""
        mock_gateway.get_file.return_value = FileContent(WORKFLOW_PATH, sha="stale")
        mock_gateway.put_file.side_effect = GitHubAPIError("sha does not match", status_code=409)

        with pytest.raises(GitHubAPIError) as exc_info:
            upsert_workflow(mock_gateway, PREFIX, "main")

        assert exc_info.value.status_code == 409


@pytest.mark.unit
class TestCreateMainBranch:
    """Tests for create_main_branch."""

    def test_branches_from_default_head_and_adds_workflow(self, mock_gateway):
        """Test the queue branch is created at the default head and gets the workflow."""
        mock_gateway.get_default_branch_head.return_value = "d3fau17"
        mock_gateway.get_file.side_effect = GitHubNotFoundError("Not Found", status_code=404)
        mock_gateway.put_file.return_value = FileCommit(commit_sha="w0rkf10w")

        sha = create_main_branch(mock_gateway, PREFIX, 15)

        assert sha == "w0rkf10w"
        mock_gateway.create_ref.assert_called_once_with(f"{PREFIX}/main", "d3fau17")
        assert mock_gateway.put_file.call_args.args[2] == render_workflow(PREFIX, 15)

    def test_existing_branch_fails(self, mock_gateway):
        """Test creating an already existing queue branch propagates the error."""
        mock_gateway.get_default_branch_head.return_value = "d3fau17"
        mock_gateway.create_ref.side_effect = GitHubAPIError(
            "Reference already exists", status_code=422
        )

        with pytest.raises(GitHubAPIError, match="already exists"):
            create_main_branch(mock_gateway, PREFIX)

        mock_gateway.put_file.assert_not_called()
