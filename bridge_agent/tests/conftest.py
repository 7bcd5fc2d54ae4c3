"""测试公共夹具：每个测试使用独立的数据目录"""
import pytest
from fastapi.testclient import TestClient

from bridge_agent.app.config import settings
from bridge_agent.app.services.shared_services import reset_shared_services


@pytest.fixture
def agent_dir(tmp_path, monkeypatch):
    """把 Agent 数据目录指向临时目录，并丢弃已创建的共享服务"""
    monkeypatch.setattr(settings, "data_dir", str(tmp_path))
    reset_shared_services()
    yield tmp_path
    reset_shared_services()


@pytest.fixture
def client(agent_dir):
    from bridge_agent.app.main import app

    return TestClient(app)


@pytest.fixture
def paired_client(client):
    """已完成配对、默认带上令牌的客户端"""
    code = client.get("/pair").json()["pairCode"]
    token = client.post("/pair", json={"pairCode": code}).json()["token"]
    client.headers.update({"x-bhejo-token": token})
    return client
