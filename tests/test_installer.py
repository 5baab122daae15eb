"""Tests for KubeInstaller."""

import asyncio
import json

import pytest
from kubernetes.client.exceptions import ApiException

import sentinel_installer.installer as installer_module
from fakes import configmap, crd, custom_resource, deployment, installed, namespace
from sentinel_installer import (
    LAST_APPLIED_ANNOTATION,
    CallbackError,
    GroupOperationError,
    InstallerCallbacks,
    InvalidResourceError,
    MissingAnnotationError,
    ReadinessTimeoutError,
    ResourceOperationError,
    ScopeResolutionError,
)


class RecordingCallbacks(InstallerCallbacks):
    """Records every hook invocation."""

    def __init__(self):
        self.calls = []

    def pre_install(self):
        self.calls.append(("pre_install", None))

    def post_install(self):
        self.calls.append(("post_install", None))

    def pre_create(self, resource):
        self.calls.append(("pre_create", resource.name))

    def post_create(self, resource):
        self.calls.append(("post_create", resource.name))

    def pre_update(self, resource):
        self.calls.append(("pre_update", resource.name))

    def post_update(self, resource):
        self.calls.append(("post_update", resource.name))

    def pre_delete(self, resource):
        self.calls.append(("pre_delete", resource.name))

    def post_delete(self, resource):
        self.calls.append(("post_delete", resource.name))


def keys(resources):
    return [res.key for res in resources]


class TestReconcileScenarios:
    """End-to-end reconciliation scenarios."""

    @pytest.mark.asyncio
    async def test_creates_namespace_then_configmap(self, fake_cluster, make_installer, owner_labels):
        """Test an empty cache creates the namespace before the configmap."""
        installer = await make_installer()
        ns = namespace("ns")
        cm = configmap("cm", {"a": "1"})

        summary = await installer.reconcile_resources("ns", [ns, cm], owner_labels)

        cm_key = configmap("cm", namespace="ns").key
        assert fake_cluster.ops() == [("create", ns.key), ("create", cm_key)]
        assert summary.created == [str(ns.key), str(cm_key)]
        assert summary.updated == [] and summary.deleted == []

        cached = await installer.list_all_resources()
        assert keys(cached) == [ns.key, cm_key]
        assert cached[1].namespace == "ns"
        assert cached[1].labels == owner_labels
        assert LAST_APPLIED_ANNOTATION in cached[1].annotations

    @pytest.mark.asyncio
    async def test_update_sends_only_changed_data(
        self, fake_cluster, make_installer, owner_labels, monkeypatch
    ):
        """Test a changed configmap is updated with a minimal patch."""
        fake_cluster.seed(installed(configmap("cm", {"a": "1"}, namespace="ns"), owner_labels))
        fake_cluster.seed(namespace("ns"))
        installer = await make_installer()

        patches = []
        original_get_patch = installer_module.get_patch

        def recording_get_patch(original, desired):
            patch = original_get_patch(original, desired)
            patches.append(json.loads(patch))
            return patch

        monkeypatch.setattr(installer_module, "get_patch", recording_get_patch)

        summary = await installer.reconcile_resources("ns", [configmap("cm", {"a": "2"})], owner_labels)

        assert fake_cluster.ops("create") == []
        assert fake_cluster.ops("delete") == []
        assert len(fake_cluster.ops("update")) == 1
        assert summary.updated == [str(configmap("cm", namespace="ns").key)]

        assert len(patches) == 1
        assert patches[0]["data"] == {"a": "2"}
        assert set(patches[0]) == {"data", "metadata"}
        assert set(patches[0]["metadata"]) == {"annotations"}

        written = fake_cluster.updates[0]
        assert written["data"] == {"a": "2"}
        # the server's fields survive the update
        assert written["metadata"]["uid"]

    @pytest.mark.asyncio
    async def test_reconcile_is_idempotent(self, fake_cluster, make_installer, owner_labels):
        """Test a second identical run performs no writes."""
        installer = await make_installer()
        desired = [namespace("ns"), configmap("cm", {"a": "1"}), deployment("web")]

        await installer.reconcile_resources("ns", desired, owner_labels)
        writes = len(fake_cluster.operations)

        summary = await installer.reconcile_resources("ns", desired, owner_labels)

        assert len(fake_cluster.operations) == writes
        assert summary.writes == 0
        assert len(summary.unchanged) == 3

    @pytest.mark.asyncio
    async def test_idempotent_after_cache_rebuild(self, fake_cluster, make_installer, owner_labels):
        """Test a fresh cache decodes last-applied annotations instead of live state."""
        installer = await make_installer()
        desired = [configmap("cm", {"a": "1"}), deployment("web")]
        await installer.reconcile_resources("ns", desired, owner_labels)
        writes = len(fake_cluster.operations)

        restarted = await make_installer()
        summary = await restarted.reconcile_resources("ns", desired, owner_labels)

        assert summary.writes == 0
        assert len(fake_cluster.operations) == writes

    @pytest.mark.asyncio
    async def test_desired_documents_are_not_mutated(self, make_installer, owner_labels):
        """Test the caller's documents keep their original content."""
        installer = await make_installer()
        cm = configmap("cm", {"a": "1"})
        before = cm.deep_copy()

        await installer.reconcile_resources("ns", [cm], owner_labels)

        assert cm == before

    @pytest.mark.asyncio
    async def test_accepts_raw_objects(self, fake_cluster, make_installer, owner_labels):
        """Test plain dicts are accepted as desired resources."""
        installer = await make_installer()

        await installer.reconcile_resources("ns", [configmap("cm").to_dict()], owner_labels)

        assert configmap("cm", namespace="ns").key in fake_cluster.objects

    @pytest.mark.asyncio
    async def test_malformed_labels_rejected_before_writes(self, fake_cluster, make_installer, owner_labels):
        """Test a raw object with non-mapping labels is an input error."""
        installer = await make_installer()
        raw = configmap("cm").to_dict()
        raw["metadata"]["labels"] = "oops"

        with pytest.raises(InvalidResourceError):
            await installer.reconcile_resources("ns", [raw], owner_labels)

        assert fake_cluster.ops() == []


class TestOrdering:
    """Install and delete ordering."""

    @pytest.mark.asyncio
    async def test_namespace_created_before_deployment(self, fake_cluster, make_installer, owner_labels):
        """Test kinds are created in install order regardless of input order."""
        installer = await make_installer()
        ns = namespace("ns")

        await installer.reconcile_resources("ns", [deployment("web"), configmap("cm"), ns], owner_labels)

        kinds = [key.gvk.kind for _, key in fake_cluster.ops("create")]
        assert kinds == ["Namespace", "ConfigMap", "Deployment"]

    @pytest.mark.asyncio
    async def test_purge_deletes_in_reverse_order(self, fake_cluster, make_installer, owner_labels):
        """Test deletes walk the install order backwards."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [namespace("ns"), deployment("web")], owner_labels)

        summary = await installer.purge_resources(owner_labels)

        kinds = [key.gvk.kind for _, key in fake_cluster.ops("delete")]
        assert kinds == ["Deployment", "Namespace"]
        assert len(summary.deleted) == 2
        assert await installer.list_all_resources() == []
        assert fake_cluster.objects == {}

    @pytest.mark.asyncio
    async def test_deletes_precede_creates_and_updates(self, fake_cluster, make_installer, owner_labels):
        """Test a run deletes, then creates, then updates."""
        installer = await make_installer()
        await installer.reconcile_resources(
            "ns", [configmap("old"), configmap("keep", {"a": "1"})], owner_labels
        )
        fake_cluster.operations.clear()

        await installer.reconcile_resources(
            "ns", [configmap("keep", {"a": "2"}), configmap("new")], owner_labels
        )

        verbs = [(verb, key.name) for verb, key in fake_cluster.operations]
        assert verbs == [("delete", "old"), ("create", "new"), ("update", "keep")]


class TestOwnership:
    """Ownership label scoping."""

    @pytest.mark.asyncio
    async def test_disjoint_owners_do_not_delete_each_other(self, fake_cluster, make_installer):
        """Test purging one owner leaves another owner's resources alone."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [configmap("a")], {"owner": "a"})
        await installer.reconcile_resources("ns", [configmap("b")], {"owner": "b"})

        await installer.purge_resources({"owner": "a"})

        remaining = await installer.list_all_resources()
        assert [res.name for res in remaining] == ["b"]
        assert [key.name for _, key in fake_cluster.ops("delete")] == ["a"]

    @pytest.mark.asyncio
    async def test_reconcile_only_deletes_owned_resources(self, fake_cluster, make_installer):
        """Test an empty desired set only removes resources of the same owner."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [configmap("a")], {"owner": "a"})
        await installer.reconcile_resources("ns", [configmap("b")], {"owner": "b"})

        summary = await installer.reconcile_resources("ns", [], {"owner": "b"})

        assert summary.deleted == [str(configmap("b", namespace="ns").key)]
        assert configmap("a", namespace="ns").key in fake_cluster.objects

    @pytest.mark.asyncio
    async def test_unmanaged_resources_are_untouched(self, fake_cluster, make_installer, owner_labels):
        """Test resources without owner labels are never deleted."""
        fake_cluster.seed(configmap("foreign", namespace="ns"))
        installer = await make_installer()

        await installer.purge_resources(owner_labels)

        assert configmap("foreign", namespace="ns").key in fake_cluster.objects

    @pytest.mark.asyncio
    async def test_empty_owner_labels_rejected(self, fake_cluster, make_installer):
        """Test an empty label set is refused before any write."""
        installer = await make_installer()

        with pytest.raises(InvalidResourceError):
            await installer.reconcile_resources("ns", [configmap("cm")], {})
        with pytest.raises(InvalidResourceError):
            await installer.purge_resources({})
        assert fake_cluster.operations == []

    @pytest.mark.asyncio
    async def test_owned_resource_without_annotation_fails(self, fake_cluster, make_installer, owner_labels):
        """Test an owned resource not written by the installer fails the run."""
        fake_cluster.seed(configmap("cm", namespace="ns", labels=owner_labels))
        installer = await make_installer()

        with pytest.raises(MissingAnnotationError):
            await installer.reconcile_resources("ns", [], owner_labels)
        assert fake_cluster.ops("delete") == []

    @pytest.mark.asyncio
    async def test_list_all_cached_values(self, make_installer):
        """Test distinct label values are listed in first-seen order."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [configmap("b")], {"owner": "b"})
        await installer.reconcile_resources("ns", [configmap("a1"), configmap("a2")], {"owner": "a"})

        assert await installer.list_all_cached_values("owner") == ["a", "b"]
        assert await installer.list_all_cached_values("missing") == []


class TestNamespaces:
    """Scope detection and the install namespace."""

    @pytest.mark.asyncio
    async def test_cluster_scoped_resources_lose_namespace(self, fake_cluster, make_installer, owner_labels):
        """Test cluster scoped kinds are written without a namespace."""
        installer = await make_installer()
        role = {
            "apiVersion": "rbac.authorization.k8s.io/v1",
            "kind": "ClusterRole",
            "metadata": {"name": "reader", "namespace": "wrong"},
            "rules": [],
        }

        await installer.reconcile_resources("ns", [role], owner_labels)

        created = [key for _, key in fake_cluster.ops("create")]
        assert [(key.gvk.kind, key.namespace) for key in created] == [
            ("Namespace", ""),
            ("ClusterRole", ""),
        ]

    @pytest.mark.asyncio
    async def test_install_namespace_created_when_missing(self, fake_cluster, make_installer, owner_labels):
        """Test the install namespace is created but not tracked."""
        installer = await make_installer()

        summary = await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)

        assert fake_cluster.ops("create")[0] == ("create", namespace("ns").key)
        assert summary.created == [str(configmap("cm", namespace="ns").key)]
        assert [res.kind for res in await installer.list_all_resources()] == ["ConfigMap"]

    @pytest.mark.asyncio
    async def test_existing_install_namespace_tolerated(self, fake_cluster, make_installer, owner_labels):
        """Test an existing install namespace is not an error."""
        fake_cluster.seed(namespace("ns"))
        installer = await make_installer()

        await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)

        assert [key.gvk.kind for _, key in fake_cluster.ops("create")] == ["ConfigMap"]

    @pytest.mark.asyncio
    async def test_install_namespace_failure_aborts(self, fake_cluster, make_installer, owner_labels):
        """Test a failure creating the install namespace stops the run."""
        fake_cluster.fail("create", "ns", ApiException(status=403, reason="Forbidden"))
        installer = await make_installer()

        with pytest.raises(ResourceOperationError):
            await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)
        assert fake_cluster.operations == []

    @pytest.mark.asyncio
    async def test_custom_resource_scope_from_crd_in_same_batch(
        self, fake_cluster, make_installer, owner_labels
    ):
        """Test a kind registered by a CRD in the same run resolves its scope."""
        installer = await make_installer()
        widget = custom_resource("Widget", "w")

        await installer.reconcile_resources("ns", [widget, crd("Widget")], owner_labels)

        created = [key for _, key in fake_cluster.ops("create")]
        assert [key.gvk.kind for key in created] == ["Namespace", "CustomResourceDefinition", "Widget"]
        assert created[-1].namespace == "ns"
        assert fake_cluster.refreshes == 1

    @pytest.mark.asyncio
    async def test_cluster_scoped_custom_resource(self, fake_cluster, make_installer, owner_labels):
        """Test a cluster scoped CRD leaves its resources without namespace."""
        installer = await make_installer()

        await installer.reconcile_resources(
            "", [crd("Widget", scope="Cluster"), custom_resource("Widget", "w")], owner_labels
        )

        widget_key = [key for _, key in fake_cluster.ops("create")][-1]
        assert widget_key.gvk.kind == "Widget"
        assert widget_key.namespace == ""

    @pytest.mark.asyncio
    async def test_unknown_kind_without_crd_fails(self, fake_cluster, make_installer, owner_labels):
        """Test a kind with neither a REST mapping nor a CRD is an input error."""
        installer = await make_installer()

        with pytest.raises(ScopeResolutionError):
            await installer.reconcile_resources("ns", [custom_resource("Widget", "w")], owner_labels)
        assert fake_cluster.operations == []

    @pytest.mark.asyncio
    async def test_ambiguous_crds_fail(self, fake_cluster, make_installer, owner_labels):
        """Test two CRDs defining the same kind are an input error."""
        installer = await make_installer()
        desired = [
            crd("Widget", name="widgets.example.com"),
            crd("Widget", name="widgets-copy.example.com"),
            custom_resource("Widget", "w"),
        ]

        with pytest.raises(ScopeResolutionError):
            await installer.reconcile_resources("ns", desired, owner_labels)

    @pytest.mark.asyncio
    async def test_crd_version_must_match(self, make_installer, owner_labels):
        """Test a CRD serving another version does not resolve the scope."""
        installer = await make_installer()
        desired = [crd("Widget", versions=("v2",)), custom_resource("Widget", "w", version="v1")]

        with pytest.raises(ScopeResolutionError):
            await installer.reconcile_resources("ns", desired, owner_labels)


class TestReadinessGating:
    """Readiness waits after writes."""

    @pytest.mark.asyncio
    async def test_deployment_waits_for_ready_replica(self, fake_cluster, make_installer, owner_labels):
        """Test a deployment create blocks until a replica is ready."""
        fake_cluster.deployment_ready_after = 3
        installer = await make_installer()
        web = deployment("web", namespace="ns")

        await installer.reconcile_resources("ns", [deployment("web")], owner_labels)

        assert fake_cluster.polls[web.key] == 4
        assert [res.name for res in await installer.list_all_resources()] == ["web"]

    @pytest.mark.asyncio
    async def test_scaled_to_zero_deployment_not_polled(self, fake_cluster, make_installer, owner_labels):
        """Test a deployment with zero replicas is ready immediately."""
        fake_cluster.deployment_ready_after = 100
        installer = await make_installer()

        await installer.reconcile_resources("ns", [deployment("web", replicas=0)], owner_labels)

        assert fake_cluster.polls[deployment("web", namespace="ns").key] == 0

    @pytest.mark.asyncio
    async def test_readiness_timeout_fails_run(self, fake_cluster, make_installer, owner_labels):
        """Test exhausting the poll budget fails the group and skips caching."""
        fake_cluster.deployment_ready_after = 100
        installer = await make_installer()

        with pytest.raises(GroupOperationError) as exc_info:
            await installer.reconcile_resources(
                "ns", [deployment("web"), {"apiVersion": "v1", "kind": "Service", "metadata": {"name": "web"}}],
                owner_labels,
            )

        error = exc_info.value.errors[0]
        assert isinstance(error, ResourceOperationError)
        assert isinstance(error.cause, ReadinessTimeoutError)
        assert [res.kind for res in await installer.list_all_resources()] == ["Service"]
        # the service group ran before the deployment group
        assert [key.gvk.kind for _, key in fake_cluster.ops("create")] == [
            "Namespace",
            "Service",
            "Deployment",
        ]

    @pytest.mark.asyncio
    async def test_unestablished_crd_times_out(self, fake_cluster, make_installer, owner_labels):
        """Test a CRD that never becomes established fails the run."""
        fake_cluster.crd_established = False
        installer = await make_installer()

        with pytest.raises(GroupOperationError) as exc_info:
            await installer.reconcile_resources("ns", [crd("Widget"), custom_resource("Widget", "w")], owner_labels)

        assert isinstance(exc_info.value.errors[0].cause, ReadinessTimeoutError)
        assert [key.gvk.kind for _, key in fake_cluster.ops("create")][-1] == "CustomResourceDefinition"
        assert fake_cluster.refreshes == 0


class TestFailures:
    """Retry and partial failure handling."""

    @pytest.mark.asyncio
    async def test_transient_create_error_retried(self, fake_cluster, make_installer, owner_labels):
        """Test a transient error is absorbed by the retry policy."""
        fake_cluster.fail("create", "cm", ApiException(status=503, reason="Service Unavailable"))
        installer = await make_installer()

        summary = await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)

        assert summary.created == [str(configmap("cm", namespace="ns").key)]

    @pytest.mark.asyncio
    async def test_exhausted_retries_fail_run(self, fake_cluster, make_installer, owner_labels):
        """Test an error outlasting the retry budget fails the run."""
        fake_cluster.fail("create", "cm", *[ApiException(status=503, reason="Service Unavailable")] * 3)
        installer = await make_installer()

        with pytest.raises(GroupOperationError) as exc_info:
            await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)

        assert exc_info.value.errors[0].cause.status == 503

    @pytest.mark.asyncio
    async def test_group_failure_aggregates_and_stops(self, fake_cluster, make_installer, owner_labels):
        """Test a failing group completes in-flight work and stops later groups."""
        fake_cluster.fail("create", "a", ApiException(status=400, reason="Bad Request"))
        fake_cluster.fail("create", "c", ApiException(status=422, reason="Invalid"))
        installer = await make_installer()
        desired = [configmap("a"), configmap("b"), configmap("c"), deployment("web")]

        with pytest.raises(GroupOperationError) as exc_info:
            await installer.reconcile_resources("ns", desired, owner_labels)

        error = exc_info.value
        assert error.phase == "create"
        assert error.gvk.kind == "ConfigMap"
        assert [e.key.name for e in error.errors] == ["a", "c"]
        assert "(and 1 more)" in str(error)
        # the healthy sibling completed and was cached
        assert [res.name for res in await installer.list_all_resources()] == ["b"]
        assert "Deployment" not in [key.gvk.kind for _, key in fake_cluster.operations]

    @pytest.mark.asyncio
    async def test_already_deleted_resource_tolerated(self, fake_cluster, make_installer, owner_labels):
        """Test deleting a resource that is already gone succeeds."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)
        fake_cluster.objects.clear()

        summary = await installer.purge_resources(owner_labels)

        assert len(summary.deleted) == 1
        assert await installer.list_all_resources() == []

    @pytest.mark.asyncio
    async def test_delete_error_keeps_cache_entry(self, fake_cluster, make_installer, owner_labels):
        """Test a failed delete leaves the resource cached for the next run."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)
        fake_cluster.fail("delete", "cm", ApiException(status=403, reason="Forbidden"))

        with pytest.raises(GroupOperationError):
            await installer.purge_resources(owner_labels)

        assert [res.name for res in await installer.list_all_resources()] == ["cm"]

    @pytest.mark.asyncio
    async def test_update_conflict_refetches(self, fake_cluster, make_installer, owner_labels):
        """Test an update conflict retries against a fresh server copy."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [configmap("cm", {"a": "1"})], owner_labels)
        fake_cluster.fail("update", "cm", ApiException(status=409, reason="Conflict"))

        summary = await installer.reconcile_resources("ns", [configmap("cm", {"a": "2"})], owner_labels)

        assert len(summary.updated) == 1
        assert fake_cluster.updates[-1]["data"] == {"a": "2"}

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, fake_cluster, make_installer, fast_settings, owner_labels):
        """Test writes within a group respect max_concurrency."""
        fake_cluster.write_delay = 0.02
        settings = fast_settings.model_copy(update={"max_concurrency": 2})
        installer = await make_installer(settings=settings)

        await installer.reconcile_resources(
            "ns", [configmap(f"cm-{i}") for i in range(6)], owner_labels
        )

        assert 1 <= fake_cluster.max_in_flight <= 2
        assert len(fake_cluster.ops("create")) == 7


class TestCallbacks:
    """Lifecycle hooks invoked by the installer."""

    @pytest.mark.asyncio
    async def test_hook_order(self, make_installer, owner_labels):
        """Test install and resource hooks run around each phase."""
        callbacks = RecordingCallbacks()
        installer = await make_installer(callbacks)

        await installer.reconcile_resources("ns", [configmap("cm", {"a": "1"})], owner_labels)
        await installer.reconcile_resources("ns", [configmap("cm", {"a": "2"})], owner_labels)
        await installer.purge_resources(owner_labels)

        assert callbacks.calls == [
            ("pre_install", None),
            ("pre_create", "cm"),
            ("post_create", "cm"),
            ("post_install", None),
            ("pre_install", None),
            ("pre_update", "cm"),
            ("post_update", "cm"),
            ("post_install", None),
            ("pre_delete", "cm"),
            ("post_delete", "cm"),
        ]

    @pytest.mark.asyncio
    async def test_unchanged_resource_skips_post_update(self, make_installer, owner_labels):
        """Test a matching resource runs pre_update only."""
        callbacks = RecordingCallbacks()
        installer = await make_installer(callbacks)
        await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)
        callbacks.calls.clear()

        await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)

        assert ("pre_update", "cm") in callbacks.calls
        assert ("post_update", "cm") not in callbacks.calls

    @pytest.mark.asyncio
    async def test_user_hooks_see_last_applied_annotation(self, make_installer, owner_labels):
        """Test the built-in annotation is stamped before user hooks run."""
        seen = []

        class Inspect(InstallerCallbacks):
            def pre_create(self, resource):
                seen.append(LAST_APPLIED_ANNOTATION in resource.annotations)

        installer = await make_installer(Inspect())
        await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)

        assert seen == [True]

    @pytest.mark.asyncio
    async def test_pre_install_failure_aborts(self, fake_cluster, make_installer, owner_labels):
        """Test a failing pre_install hook stops the run before any write."""

        class Broken(InstallerCallbacks):
            def pre_install(self):
                raise RuntimeError("boom")

        installer = await make_installer(Broken())

        with pytest.raises(CallbackError, match="error in pre_install hook: boom"):
            await installer.reconcile_resources("ns", [configmap("cm")], owner_labels)
        assert fake_cluster.operations == []

    @pytest.mark.asyncio
    async def test_pre_create_failure_wrapped(self, fake_cluster, make_installer, owner_labels):
        """Test a failing resource hook names the phase and resource."""

        class Broken(InstallerCallbacks):
            def pre_create(self, resource):
                if resource.name == "bad":
                    raise RuntimeError("boom")

        installer = await make_installer(Broken())

        with pytest.raises(GroupOperationError) as exc_info:
            await installer.reconcile_resources("ns", [configmap("bad"), configmap("good")], owner_labels)

        error = exc_info.value.errors[0]
        assert isinstance(error.cause, CallbackError)
        assert error.cause.phase == "pre_create"
        assert [key.name for _, key in fake_cluster.ops("create")] == ["ns", "good"]


class TestListAllResources:
    """Listing the installed resources."""

    @pytest.mark.asyncio
    async def test_returns_sorted_copies(self, make_installer, owner_labels):
        """Test listing returns install-ordered copies of the cache."""
        installer = await make_installer()
        await installer.reconcile_resources("ns", [deployment("web"), configmap("cm")], owner_labels)

        listed = await installer.list_all_resources()
        assert [res.kind for res in listed] == ["ConfigMap", "Deployment"]

        listed[0].object["data"] = {"mutated": "yes"}
        assert (await installer.list_all_resources())[0].object["data"] == {}

    @pytest.mark.asyncio
    async def test_concurrent_reconciles_of_different_owners(self, fake_cluster, make_installer):
        """Test independent owners can reconcile concurrently against one cache."""
        installer = await make_installer()

        await asyncio.gather(
            installer.reconcile_resources("ns-a", [configmap("a")], {"owner": "a"}),
            installer.reconcile_resources("ns-b", [configmap("b")], {"owner": "b"}),
        )

        assert sorted(res.name for res in await installer.list_all_resources()) == ["a", "b"]
