from __future__ import annotations

import yaml
from notes_deploy.core import PipelineConfig
from notes_deploy.manifests import app_resources, monitoring_resources, render_yaml
from notes_deploy.manifests.monitoring import prometheus_config


def _by_kind(resource_set, kind: str) -> dict:
    return next(r.to_dict() for r in resource_set if r.kind == kind)


def test_app_resources_in_apply_order(cfg: PipelineConfig) -> None:
    rs = app_resources(cfg)
    assert [r.kind for r in rs] == ["Namespace", "ConfigMap", "Deployment", "Service"]
    assert rs.keys()[0] == "Namespace/notes-app"
    assert all(r.namespace == "notes-app" for r in rs if r.namespaced)


def test_app_deployment(cfg: PipelineConfig) -> None:
    dep = _by_kind(app_resources(cfg), "Deployment")
    spec = dep["spec"]
    container = spec["template"]["spec"]["containers"][0]

    assert spec["replicas"] == 2
    assert container["name"] == "notes-app"
    assert container["image"] == "notes-app:latest"
    assert container["ports"] == [{"name": "http", "containerPort": 8081}]
    assert container["resources"] == {
        "requests": {"cpu": "250m", "memory": "256Mi"},
        "limits": {"cpu": "500m", "memory": "512Mi"},
    }
    assert container["readinessProbe"]["httpGet"]["path"] == "/actuator/health"
    annotations = spec["template"]["metadata"]["annotations"]
    assert annotations["prometheus.io/path"] == "/actuator/prometheus"


def test_app_config_map(cfg: PipelineConfig) -> None:
    cm = _by_kind(app_resources(cfg), "ConfigMap")
    assert cm["metadata"]["name"] == "notes-app-config"
    assert cm["data"] == {
        "SPRING_PROFILES_ACTIVE": "linux",
        "JAVA_OPTS": "-Xmx512m -Xms256m",
    }


def test_app_manifest_hash_is_stable_across_builds() -> None:
    first = app_resources(PipelineConfig(build_number=42))
    second = app_resources(PipelineConfig(build_number=43))
    assert [r.content_hash() for r in first] == [r.content_hash() for r in second]


def test_monitoring_resources(cfg: PipelineConfig) -> None:
    rs = monitoring_resources(cfg)
    kinds = [r.kind for r in rs]
    assert kinds[0] == "Namespace"
    assert kinds.index("ConfigMap") < kinds.index("Deployment") < kinds.index("Service")
    assert all(r.namespace == "monitoring" for r in rs if r.namespaced)


def test_prometheus_scrapes_the_app_service(cfg: PipelineConfig) -> None:
    scrape = yaml.safe_load(prometheus_config(cfg))["scrape_configs"][0]
    assert scrape["metrics_path"] == "/actuator/prometheus"
    assert scrape["static_configs"][0]["targets"] == ["notes-app.notes-app.svc:8081"]


def test_render_yaml(cfg: PipelineConfig) -> None:
    text = render_yaml(monitoring_resources(cfg), app_resources(cfg))
    docs = [d for d in yaml.safe_load_all(text) if d]
    assert len(docs) == 11
    assert docs[0]["metadata"]["name"] == "monitoring"
    assert docs[-1]["kind"] == "Service"
