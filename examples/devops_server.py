"""
DevOps tool server for demo purposes.

Each tool validates its arguments, shells out to a local binary and returns
the output as text. A {name, output} notification is pushed after each call.

Run it as a stdio endpoint (see genval_mcp.config.yaml in this directory).
"""

import sys
from typing import List

import anyio
from mcp.server.fastmcp import Context, FastMCP


app = FastMCP("devops-server")


async def _run(command: List[str]) -> str:
    print(f"[DEBUG] Running: {' '.join(command)}", file=sys.stderr)
    result = await anyio.run_process(command, check=False)
    output = (result.stdout + result.stderr).decode(errors="replace")
    if result.returncode != 0:
        raise RuntimeError(f"{command[0]} exited with {result.returncode}: {output}")
    return output


async def _notify(ctx: Context, name: str, **output) -> None:
    await ctx.session.send_log_message(
        level="info",
        data={"name": name, "output": output},
    )


@app.tool()
async def pull_image(image: str, ctx: Context) -> str:
    """
    Pull an image from Docker Hub.

    Args:
        image: Name of the Docker image to pull (e.g. 'nginx:latest').
    """
    if not image:
        raise ValueError("invalid or missing image parameter")
    await _run(["docker", "pull", image])
    await _notify(ctx, "pull_image", image=image, status="pulled")
    return f"Image '{image}' pulled successfully"


@app.tool()
async def get_pods(ctx: Context) -> str:
    """Get Kubernetes Pods from the cluster."""
    output = await _run(["kubectl", "get", "pods"])
    await _notify(ctx, "get_pods", lines=len(output.splitlines()))
    return output


@app.tool()
async def git_init(directory: str, ctx: Context) -> str:
    """
    Initialize a Git repository in the provided project directory.

    Args:
        directory: Path to the project directory.
    """
    if not directory:
        raise ValueError("invalid or missing directory parameter")
    output = await _run(["git", "init", directory])
    await _notify(ctx, "git_init", directory=directory)
    return output


@app.tool()
async def create_table(table_name: str, headers: str, values: str, ctx: Context) -> str:
    """
    Create a table in the local Postgres database and insert one row.

    Args:
        table_name: Name of the table to create.
        headers: Comma separated column definitions (e.g. 'id SERIAL PRIMARY KEY, name TEXT').
        values: Comma separated list of values to insert (e.g. "1, 'John'").
    """
    sql = (
        f"CREATE TABLE {table_name} ({headers}); "
        f"INSERT INTO {table_name} VALUES ({values});"
    )
    output = await _run(["psql", "-d", "postgres", "-c", sql])
    await _notify(ctx, "create_table", table_name=table_name)
    return output


if __name__ == "__main__":
    app.run()
