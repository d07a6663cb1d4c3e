from __future__ import annotations

from typing import Any

from notes_deploy.core import PipelineConfig
from notes_deploy.stages.apply.resources import ClusterResourceSet

APP_RESOURCE_SET = "app"


def _labels(cfg: PipelineConfig) -> dict[str, str]:
    return {"app": cfg.deployment_name, "app.kubernetes.io/managed-by": "notes-deploy"}


def app_resources(cfg: PipelineConfig) -> ClusterResourceSet:
    """
    Namespace, config, deployment and service for the notes application.

    The deployment references the `latest` alias. The content hash stays the
    same across builds, so re-applying never reverts the versioned image the
    rollout controller sets.
    """
    labels = _labels(cfg)
    selector = {"app": cfg.deployment_name}
    ns = cfg.namespace

    container: dict[str, Any] = {
        "name": cfg.container_name,
        "image": cfg.latest_ref,
        "imagePullPolicy": "Always",
        "ports": [{"name": "http", "containerPort": cfg.app_port}],
        "envFrom": [{"configMapRef": {"name": f"{cfg.deployment_name}-config"}}],
        "resources": cfg.resources.to_manifest(),
        "readinessProbe": {
            "httpGet": {"path": "/actuator/health", "port": cfg.app_port},
            "initialDelaySeconds": 20,
            "periodSeconds": 10,
        },
        "livenessProbe": {
            "httpGet": {"path": "/actuator/health", "port": cfg.app_port},
            "initialDelaySeconds": 60,
            "periodSeconds": 20,
        },
        "volumeMounts": [
            {"name": "data", "mountPath": "/app/data"},
            {"name": "logs", "mountPath": "/app/logs"},
        ],
    }

    docs: list[dict[str, Any]] = [
        {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": ns, "labels": labels},
        },
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": f"{cfg.deployment_name}-config",
                "namespace": ns,
                "labels": labels,
            },
            "data": {
                "SPRING_PROFILES_ACTIVE": cfg.spring_profile,
                "JAVA_OPTS": cfg.java_opts,
            },
        },
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {
                "name": cfg.deployment_name,
                "namespace": ns,
                "labels": labels,
            },
            "spec": {
                "replicas": cfg.replica_count,
                "selector": {"matchLabels": selector},
                "template": {
                    "metadata": {
                        "labels": labels,
                        "annotations": {
                            "prometheus.io/scrape": "true",
                            "prometheus.io/port": str(cfg.app_port),
                            "prometheus.io/path": "/actuator/prometheus",
                        },
                    },
                    "spec": {
                        "containers": [container],
                        "volumes": [
                            {"name": "data", "emptyDir": {}},
                            {"name": "logs", "emptyDir": {}},
                        ],
                    },
                },
            },
        },
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {
                "name": cfg.deployment_name,
                "namespace": ns,
                "labels": labels,
            },
            "spec": {
                "selector": selector,
                "ports": [
                    {
                        "name": "http",
                        "port": cfg.app_port,
                        "targetPort": "http",
                    }
                ],
            },
        },
    ]
    return ClusterResourceSet.ordered(APP_RESOURCE_SET, docs)
