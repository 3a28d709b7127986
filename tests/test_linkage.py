"""Tests for parent/child link validation and status resolution."""

from pathlib import Path

import pytest

from threadurl.errors import LinkageRejected, ThreadNotFound
from threadurl.linkage import (
    ORIGIN_LOG,
    ORIGIN_PARENT,
    ORIGIN_SCAN,
    ChildCandidate,
    ChildDiscovery,
    ChildReport,
    require_validated,
    resolve_children,
    select_status,
    validate_branch_path,
)
from threadurl.models import LinkEvidence, Provider, StatusEvidence, ThreadURI

from conftest import CODEX_CHILD, CODEX_MAIN

MAIN = ThreadURI(Provider.CODEX, CODEX_MAIN)
# Differs from CODEX_MAIN in the last character only
NEAR_MAIN = CODEX_MAIN[:-1] + "3"


class TestSelectStatus:
    def test_no_evidence(self):
        status = select_status([])
        assert (status.status, status.source) == ("pendingInit", "inferred")

    def test_precedence(self):
        """The strongest source wins regardless of order."""
        evidence = [
            StatusEvidence("inferred", "completed"),
            StatusEvidence("child_rollout", "running"),
            StatusEvidence("protocol", "shutdown"),
            StatusEvidence("parent_rollout", "errored"),
        ]
        status = select_status(evidence)
        assert (status.status, status.source) == ("shutdown", "protocol")

    def test_child_rollout_beats_inferred(self):
        status = select_status([StatusEvidence("inferred", "completed"), StatusEvidence("child_rollout", "errored")])
        assert (status.status, status.source) == ("errored", "child_rollout")

    def test_last_observation_within_source(self):
        status = select_status([StatusEvidence("child_rollout", "running"), StatusEvidence("child_rollout", "completed")])
        assert status.status == "completed"


class TestResolveChildren:
    def _resolve(self, candidate, report, discovery=None):
        discovery = discovery or ChildDiscovery()
        discovery.candidates.append(candidate)
        return resolve_children(MAIN, discovery, [report])

    def test_exact_back_reference_validates(self):
        path = Path("/x/child.jsonl")
        result = self._resolve(
            ChildCandidate(CODEX_CHILD, path, ORIGIN_PARENT),
            ChildReport(CODEX_CHILD, path, back_reference=CODEX_MAIN),
        )
        assert result.links[0].validated
        assert result.links[0].evidence == LinkEvidence.BACK_REFERENCE
        assert result.warnings == ()

    def test_near_match_is_not_validated(self):
        """A back-reference that differs by one character does not confirm the link."""
        path = Path("/x/child.jsonl")
        result = self._resolve(
            ChildCandidate(CODEX_CHILD, path, ORIGIN_PARENT),
            ChildReport(CODEX_CHILD, path, back_reference=NEAR_MAIN),
        )
        assert not result.links[0].validated
        assert result.links[0].evidence == LinkEvidence.PARENT_REFERENCE
        assert len(result.warnings) == 1

    def test_scanned_orphan_excluded_with_one_warning(self):
        path = Path("/x/orphan.jsonl")
        result = self._resolve(
            ChildCandidate(CODEX_CHILD, path, ORIGIN_SCAN),
            ChildReport(CODEX_CHILD, path, back_reference=NEAR_MAIN),
        )
        assert result.links == ()
        assert result.agents == ()
        assert len(result.warnings) == 1
        assert str(path) in result.warnings[0]

    def test_log_inference_unconfirmed(self):
        path = Path("/x/child.json")
        result = self._resolve(
            ChildCandidate(CODEX_CHILD, path, ORIGIN_LOG, "/resume in logs"),
            ChildReport(CODEX_CHILD, path),
        )
        assert result.links[0].evidence == LinkEvidence.LOG_INFERENCE
        assert not result.links[0].validated

    def test_missing_file_is_not_found(self):
        """A child with no file is notFound even when the parent claims otherwise."""
        discovery = ChildDiscovery(parent_evidence={CODEX_CHILD: [StatusEvidence("protocol", "completed")]})
        result = self._resolve(ChildCandidate(CODEX_CHILD, None, ORIGIN_PARENT), ChildReport(CODEX_CHILD, None), discovery)
        agent = result.agents[0]
        assert (agent.status.status, agent.status.source) == ("notFound", "inferred")
        assert agent.link.evidence == LinkEvidence.MISSING_FILE

    def test_parent_evidence_outranks_child(self):
        path = Path("/x/child.jsonl")
        discovery = ChildDiscovery(parent_evidence={CODEX_CHILD: [StatusEvidence("protocol", "shutdown")]})
        result = self._resolve(
            ChildCandidate(CODEX_CHILD, path, ORIGIN_PARENT),
            ChildReport(CODEX_CHILD, path, back_reference=CODEX_MAIN, evidence=(StatusEvidence("inferred", "completed"),)),
            discovery,
        )
        assert result.agents[0].status.status == "shutdown"

    def test_failed_child_does_not_abort(self):
        path = Path("/x/child.jsonl")
        result = self._resolve(
            ChildCandidate(CODEX_CHILD, path, ORIGIN_PARENT),
            ChildReport(CODEX_CHILD, path, error="EmptyFile: thread file is empty"),
        )
        assert len(result.agents) == 1
        assert any("EmptyFile" in w for w in result.warnings)


class TestRequireValidated:
    def test_unknown_agent(self):
        with pytest.raises(ThreadNotFound):
            require_validated([], MAIN.child(CODEX_CHILD))

    def test_unvalidated_agent(self):
        path = Path("/x/child.jsonl")
        discovery = ChildDiscovery(candidates=[ChildCandidate(CODEX_CHILD, path, ORIGIN_PARENT)])
        result = resolve_children(MAIN, discovery, [ChildReport(CODEX_CHILD, path, back_reference=NEAR_MAIN)])
        with pytest.raises(LinkageRejected):
            require_validated(result.agents, MAIN.child(CODEX_CHILD))


class TestValidateBranchPath:
    def test_valid(self):
        validate_branch_path([0, 1, 3], [None, 0, 1, 1])

    def test_forward_pointer(self):
        with pytest.raises(LinkageRejected):
            validate_branch_path([2, 1], [1, 2, None])

    def test_root_with_parent(self):
        with pytest.raises(LinkageRejected):
            validate_branch_path([1, 2], [None, 0, 1])
