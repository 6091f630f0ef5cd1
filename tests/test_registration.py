"""Tests for service registration through pod labels."""

import os
import threading
import unittest
from unittest import mock

from fake_apiserver import TEST_NAMESPACE, TEST_POD_NAME, TEST_TOKEN, FakeApiServer

from vault_pod_labels.config import MissingConfigError
from vault_pod_labels.kubernetes.api import KubernetesClient
from vault_pod_labels.kubernetes.connection import Credentials
from vault_pod_labels.kubernetes.errors import MetadataShapeError, NotFoundError, UnexpectedStatusError
from vault_pod_labels.registration import (
    LABEL_ACTIVE,
    LABEL_INITIALIZED,
    LABEL_PERF_STANDBY,
    LABEL_SEALED,
    LABEL_VAULT_VERSION,
    HAState,
    ServiceRegistration,
    to_label_value,
)

TEST_VERSION = "version 1"


class RegistrationTestCase(unittest.TestCase):
    """Shared fixtures: a fake API server holding one pod."""

    def setUp(self):
        """Set up test fixtures."""
        self.env_patcher = mock.patch.dict(os.environ)
        self.env_patcher.start()
        os.environ.pop("VAULT_K8S_NAMESPACE", None)
        os.environ.pop("VAULT_K8S_POD_NAME", None)

        self.server = FakeApiServer()
        self.build_patcher = mock.patch("vault_pod_labels.kubernetes.api.build_api_client")
        self.build_patcher.start().return_value = self.server

        credentials = Credentials(host="https://10.0.0.1:443", bearer_token=TEST_TOKEN, ca_cert_file="/tmp/ca.crt")
        self.client = KubernetesClient(credentials=credentials, loader=mock.Mock(return_value=credentials))

        self.config = {"namespace": TEST_NAMESPACE, "pod_name": TEST_POD_NAME}
        self.state = HAState(
            version=TEST_VERSION,
            is_active=True,
            is_sealed=True,
            is_performance_standby=True,
            is_initialized=True,
        )
        self.shutdown_event = threading.Event()
        self.logger = mock.Mock()
        self.registrations = []

    def tearDown(self):
        """Release shutdown watchers and tear down test fixtures."""
        self.shutdown_event.set()
        for registration in self.registrations:
            registration.join(timeout=5)
        self.build_patcher.stop()
        self.env_patcher.stop()

    def register(self, **kwargs) -> ServiceRegistration:
        params = {
            "shutdown_event": self.shutdown_event,
            "config": self.config,
            "state": self.state,
            "logger": self.logger,
            "client": self.client,
        }
        params.update(kwargs)
        registration = ServiceRegistration(**params)
        self.registrations.append(registration)
        return registration


class TestServiceRegistration(RegistrationTestCase):
    """Test cases for initial labelling and notifications."""

    def test_initial_labels(self):
        """Test that registering sets exactly the five labels from the state."""
        self.server.add_pod()
        self.assertEqual(len(self.server.labels()), 0)

        self.register()

        self.assertEqual(
            self.server.labels(),
            {
                LABEL_VAULT_VERSION: TEST_VERSION,
                LABEL_ACTIVE: "true",
                LABEL_SEALED: "true",
                LABEL_PERF_STANDBY: "true",
                LABEL_INITIALIZED: "true",
            },
        )
        # One GET then a single atomic PATCH
        self.assertEqual([r["method"] for r in self.server.requests], ["GET", "PATCH"])
        self.assertEqual(len(self.server.patch_bodies()[0]), 5)
        self.assertTrue(all(op["op"] == "add" for op in self.server.patch_bodies()[0]))

    def test_initial_labels_keep_existing_labels(self):
        """Test that unrelated labels already on the pod are left alone."""
        self.server.add_pod(pod={"metadata": {"name": TEST_POD_NAME, "labels": {"app": "vault"}}})

        self.register(state=HAState(version=TEST_VERSION))

        labels = self.server.labels()
        self.assertEqual(labels["app"], "vault")
        self.assertEqual(labels[LABEL_ACTIVE], "false")
        self.assertEqual(len(labels), 6)

    def test_namespace_and_pod_name_from_environment(self):
        """Test that environment variables take precedence over the config."""
        self.server.add_pod(namespace="vault", name="vault-0")
        os.environ["VAULT_K8S_NAMESPACE"] = "vault"
        os.environ["VAULT_K8S_POD_NAME"] = "vault-0"

        registration = self.register()

        self.assertEqual(registration.namespace, "vault")
        self.assertEqual(registration.pod_name, "vault-0")
        self.assertEqual(len(self.server.labels("vault", "vault-0")), 5)

    def test_missing_config(self):
        """Test that registration fails before any request without a pod name."""
        self.server.add_pod()
        with self.assertRaises(MissingConfigError):
            self.register(config={"namespace": TEST_NAMESPACE})
        self.assertEqual(self.server.requests, [])

    def test_pod_not_found(self):
        """Test that a missing pod is fatal."""
        with self.assertRaises(NotFoundError):
            self.register()

    def test_notify_active_state_change(self):
        """Test that active state changes only touch the active label."""
        self._check_notify(LABEL_ACTIVE, "notify_active_state_change")

    def test_notify_sealed_state_change(self):
        """Test that sealed state changes only touch the sealed label."""
        self._check_notify(LABEL_SEALED, "notify_sealed_state_change")

    def test_notify_performance_standby_state_change(self):
        """Test that standby state changes only touch the standby label."""
        self._check_notify(LABEL_PERF_STANDBY, "notify_performance_standby_state_change")

    def test_notify_initialized_state_change(self):
        """Test that initialized state changes only touch the initialized label."""
        self._check_notify(LABEL_INITIALIZED, "notify_initialized_state_change")

    def _check_notify(self, label: str, method_name: str):
        self.server.add_pod()
        registration = self.register()
        notify = getattr(registration, method_name)

        for value in (True, False, True):
            before = dict(self.server.labels())
            requests_before = len(self.server.requests)

            notify(value)

            after = self.server.labels()
            self.assertEqual(after[label], to_label_value(value))
            others_before = {k: v for k, v in before.items() if k != label}
            others_after = {k: v for k, v in after.items() if k != label}
            self.assertEqual(others_before, others_after)
            self.assertEqual(len(self.server.requests), requests_before + 1)
            self.assertEqual(
                self.server.patch_bodies()[-1],
                [{"op": "add", "path": f"/metadata/labels/{label}", "value": to_label_value(value)}],
            )

    def test_notify_errors_are_returned(self):
        """Test that client errors reach the caller unchanged."""
        self.server.add_pod()
        registration = self.register()
        self.server.forced_statuses = [500]

        with self.assertRaises(UnexpectedStatusError):
            registration.notify_sealed_state_change(False)


class TestReconciliation(RegistrationTestCase):
    """Test cases for creating missing metadata containers."""

    def test_pod_without_metadata(self):
        """Test that metadata and labels are created one after the other."""
        self.server.add_pod(pod={"kind": "Pod"})

        self.register()

        bodies = self.server.patch_bodies()
        self.assertEqual(bodies[0], [{"op": "add", "path": "/metadata", "value": {}}])
        self.assertEqual(bodies[1], [{"op": "add", "path": "/metadata/labels", "value": {}}])
        self.assertEqual(len(bodies), 3)
        self.assertEqual(len(self.server.labels()), 5)

    def test_pod_without_labels(self):
        """Test that only the labels container is created when metadata exists."""
        self.server.add_pod(pod={"metadata": {"name": TEST_POD_NAME}})

        self.register()

        bodies = self.server.patch_bodies()
        self.assertEqual(bodies[0], [{"op": "add", "path": "/metadata/labels", "value": {}}])
        self.assertEqual(len(bodies), 2)
        self.assertEqual(self.server.labels()[LABEL_VAULT_VERSION], TEST_VERSION)

    def test_pod_with_existing_labels_needs_no_reconciliation(self):
        """Test that no container patches are sent when labels exist."""
        self.server.add_pod()

        self.register()

        self.assertEqual(len(self.server.patch_bodies()), 1)

    def test_labels_with_unexpected_shape(self):
        """Test that labels which aren't a mapping can't be used."""
        self.server.add_pod(pod={"metadata": {"name": TEST_POD_NAME, "labels": ["not", "a", "map"]}})

        with self.assertRaises(MetadataShapeError):
            self.register()
        self.assertEqual(self.server.patch_bodies(), [])


class TestShutdown(RegistrationTestCase):
    """Test cases for the final labels left on shutdown."""

    def test_shutdown_sets_final_labels(self):
        """Test that shutdown leaves the pod marked sealed and inactive."""
        self.server.add_pod()
        registration = self.register()
        self.assertTrue(registration.shutdown_watcher.is_alive())

        self.shutdown_event.set()

        self.assertTrue(registration.join(timeout=5))
        self.assertEqual(
            self.server.labels(),
            {
                LABEL_VAULT_VERSION: TEST_VERSION,
                LABEL_ACTIVE: "false",
                LABEL_SEALED: "true",
                LABEL_PERF_STANDBY: "false",
                LABEL_INITIALIZED: "false",
            },
        )
        self.assertEqual(len(self.server.patch_bodies()[-1]), 4)

    def test_shutdown_overrides_prior_values(self):
        """Test that the final labels don't depend on earlier notifications."""
        self.server.add_pod()
        registration = self.register(state=HAState(version=TEST_VERSION, is_sealed=False))
        registration.notify_active_state_change(True)
        registration.notify_initialized_state_change(True)

        self.shutdown_event.set()
        registration.join(timeout=5)

        labels = self.server.labels()
        self.assertEqual(labels[LABEL_ACTIVE], "false")
        self.assertEqual(labels[LABEL_SEALED], "true")
        self.assertEqual(labels[LABEL_INITIALIZED], "false")

    def test_shutdown_errors_are_logged(self):
        """Test that a failing final patch is logged instead of raised."""
        self.server.add_pod()
        registration = self.register()
        self.server.forced_statuses = [500]

        self.shutdown_event.set()

        self.assertTrue(registration.join(timeout=5))
        self.logger.error.assert_called_once()
        self.assertIn("unable to set final status", self.logger.error.call_args.args[0])
        self.assertEqual(self.server.labels()[LABEL_ACTIVE], "true")

    def test_watcher_waits_for_signal(self):
        """Test that nothing is patched before shutdown is signalled."""
        self.server.add_pod()
        registration = self.register()

        self.assertFalse(registration.join(timeout=0.1))
        self.assertEqual(len(self.server.patch_bodies()), 1)


class TestHelpers(unittest.TestCase):
    """Test cases for module helpers."""

    def test_to_label_value(self):
        self.assertEqual(to_label_value(True), "true")
        self.assertEqual(to_label_value(False), "false")

    def test_ha_state_defaults(self):
        state = HAState(version="1.15.0")
        self.assertFalse(state.is_active)
        self.assertFalse(state.is_sealed)
        self.assertFalse(state.is_performance_standby)
        self.assertFalse(state.is_initialized)


if __name__ == "__main__":
    unittest.main()
