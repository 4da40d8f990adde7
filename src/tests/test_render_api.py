from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterator

import pytest
from httpx import ASGITransport, AsyncClient

from apps.loom.web import render
from apps.loom.web.dependencies import get_supervisor
from libraries.rendering.supervisor import RenderSupervisor

pytestmark = pytest.mark.anyio


@pytest.fixture(autouse=True)
def reset_overrides() -> Iterator[None]:
    yield
    render.app.dependency_overrides.clear()


@pytest.fixture
def use_supervisor() -> Callable[[RenderSupervisor], RenderSupervisor]:
    def install(supervisor: RenderSupervisor) -> RenderSupervisor:
        render.app.dependency_overrides[get_supervisor] = lambda: supervisor
        return supervisor

    return install


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=render.app)
    async with AsyncClient(transport=transport, base_url="http://loom.test") as http:
        yield http


async def test_render_then_status(
    client: AsyncClient,
    use_supervisor: Callable[[RenderSupervisor], RenderSupervisor],
    make_supervisor: Callable[..., RenderSupervisor],
    document: Path,
) -> None:
    supervisor = use_supervisor(make_supervisor())

    response = await client.post(
        "/rmarkdown/render", json={"file": "~/docs/report.Rmd", "line": 7}
    )
    assert response.status_code == 200
    assert response.json() == {"result": True}

    await asyncio.wait_for(supervisor.wait(), timeout=20)

    status = await client.get("/rmarkdown/status")
    assert status.status_code == 200
    payload = status.json()
    assert payload["running"] is False
    assert payload["has_output"] is True
    assert payload["result"]["succeeded"] is True
    assert payload["result"]["output_file"] == "~/docs/report.html"
    assert payload["result"]["output_url"] == "rmd_output/~%252Fdocs%252Freport.html/"


async def test_render_rejected_while_busy_and_terminate(
    client: AsyncClient,
    use_supervisor: Callable[[RenderSupervisor], RenderSupervisor],
    make_supervisor: Callable[..., RenderSupervisor],
    script_toolchain: Any,
    slow_script: str,
    document: Path,
) -> None:
    supervisor = use_supervisor(make_supervisor(script_toolchain(slow_script)))

    first = await client.post("/rmarkdown/render", json={"file": str(document)})
    second = await client.post("/rmarkdown/render", json={"file": str(document)})
    assert first.json() == {"result": True}
    assert second.json() == {"result": False}

    status = await client.get("/rmarkdown/status")
    assert status.json()["running"] is True

    terminated = await client.post("/rmarkdown/terminate")
    assert terminated.status_code == 200
    assert terminated.json() == {}

    result = await asyncio.wait_for(supervisor.wait(), timeout=20)
    assert result is not None
    assert result.succeeded is False


async def test_render_requires_a_file(
    client: AsyncClient,
    use_supervisor: Callable[[RenderSupervisor], RenderSupervisor],
    make_supervisor: Callable[..., RenderSupervisor],
) -> None:
    use_supervisor(make_supervisor())

    response = await client.post("/rmarkdown/render", json={"file": "   "})

    assert response.status_code == 422


async def test_terminate_when_idle(
    client: AsyncClient,
    use_supervisor: Callable[[RenderSupervisor], RenderSupervisor],
    make_supervisor: Callable[..., RenderSupervisor],
) -> None:
    use_supervisor(make_supervisor())

    response = await client.post("/rmarkdown/terminate")

    assert response.status_code == 200
    status = await client.get("/rmarkdown/status")
    assert status.json() == {"running": False, "has_output": False, "result": None}


async def test_context_reports_installation(
    client: AsyncClient,
    use_supervisor: Callable[[RenderSupervisor], RenderSupervisor],
    make_supervisor: Callable[..., RenderSupervisor],
    script_toolchain: Any,
) -> None:
    use_supervisor(make_supervisor(script_toolchain(installed=False)))

    response = await client.get("/rmarkdown/context")

    assert response.status_code == 200
    assert response.json() == {"toolchain_installed": False}
