from __future__ import annotations

from typing import Any

import yaml

from notes_deploy.core import PipelineConfig
from notes_deploy.stages.apply.resources import ClusterResourceSet

MONITORING_RESOURCE_SET = "monitoring"

PROMETHEUS_IMAGE = "prom/prometheus:v2.47.0"
GRAFANA_IMAGE = "grafana/grafana:10.1.0"
PROMETHEUS_PORT = 9090
GRAFANA_PORT = 3000


def prometheus_config(cfg: PipelineConfig) -> str:
    target = f"{cfg.deployment_name}.{cfg.namespace}.svc:{cfg.app_port}"
    return yaml.safe_dump(
        {
            "global": {"scrape_interval": "15s", "evaluation_interval": "15s"},
            "scrape_configs": [
                {
                    "job_name": cfg.deployment_name,
                    "metrics_path": "/actuator/prometheus",
                    "static_configs": [{"targets": [target]}],
                }
            ],
        },
        sort_keys=False,
    )


def _grafana_datasources(cfg: PipelineConfig) -> str:
    url = f"http://prometheus.{cfg.monitoring_namespace}.svc:{PROMETHEUS_PORT}"
    return yaml.safe_dump(
        {
            "apiVersion": 1,
            "datasources": [
                {
                    "name": "Prometheus",
                    "type": "prometheus",
                    "access": "proxy",
                    "url": url,
                    "isDefault": True,
                }
            ],
        },
        sort_keys=False,
    )


def _workload(
    *,
    name: str,
    namespace: str,
    image: str,
    port: int,
    config_map: str,
    mount_path: str,
    args: list[str] | None = None,
) -> list[dict[str, Any]]:
    labels = {"app": name, "app.kubernetes.io/managed-by": "notes-deploy"}
    container: dict[str, Any] = {
        "name": name,
        "image": image,
        "ports": [{"name": "http", "containerPort": port}],
        "volumeMounts": [{"name": "config", "mountPath": mount_path}],
    }
    if args:
        container["args"] = args
    return [
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": name, "namespace": namespace, "labels": labels},
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": {"app": name}},
                "template": {
                    "metadata": {"labels": labels},
                    "spec": {
                        "containers": [container],
                        "volumes": [
                            {"name": "config", "configMap": {"name": config_map}}
                        ],
                    },
                },
            },
        },
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": name, "namespace": namespace, "labels": labels},
            "spec": {
                "selector": {"app": name},
                "ports": [{"name": "http", "port": port, "targetPort": "http"}],
            },
        },
    ]


def monitoring_resources(cfg: PipelineConfig) -> ClusterResourceSet:
    """Prometheus scraping the app's metrics endpoint, and Grafana on top of it."""
    ns = cfg.monitoring_namespace
    docs: list[dict[str, Any]] = [
        {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": ns}},
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "prometheus-config", "namespace": ns},
            "data": {"prometheus.yml": prometheus_config(cfg)},
        },
        {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "grafana-datasources", "namespace": ns},
            "data": {"datasources.yaml": _grafana_datasources(cfg)},
        },
    ]
    docs += _workload(
        name="prometheus",
        namespace=ns,
        image=PROMETHEUS_IMAGE,
        port=PROMETHEUS_PORT,
        config_map="prometheus-config",
        mount_path="/etc/prometheus",
        args=["--config.file=/etc/prometheus/prometheus.yml"],
    )
    docs += _workload(
        name="grafana",
        namespace=ns,
        image=GRAFANA_IMAGE,
        port=GRAFANA_PORT,
        config_map="grafana-datasources",
        mount_path="/etc/grafana/provisioning/datasources",
    )
    return ClusterResourceSet.ordered(MONITORING_RESOURCE_SET, docs)
