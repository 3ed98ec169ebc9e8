# /// script
# requires-python = ">=3.9"
# dependencies = [
#     "cacheheaders",
#     "fastapi",
#     "httpx",
# ]
#
# [tool.uv.sources]
# cacheheaders = { path = "../", editable = true }
# ///


import asyncio
import logging

import httpx
from fastapi import FastAPI, Request

from cacheheaders import PolicyOverride, PolicyResolver
from cacheheaders.asgi import ASGICacheHeadersMiddleware

logging.basicConfig(level=logging.INFO)

app = FastAPI()

employees = {"1": {"id": 1, "name": "Ada"}}
processed_requests = 0


@app.get("/employees/{employee_id}")
async def read_employee(employee_id: str):
    global processed_requests
    processed_requests += 1
    return employees[employee_id]


@app.put("/employees/{employee_id}")
async def update_employee(employee_id: str, request: Request):
    global processed_requests
    processed_requests += 1
    employees[employee_id] = await request.json()
    return employees[employee_id]


resolver = PolicyResolver()
resolver.add_resource("/employees", PolicyOverride(max_age=0, must_revalidate=True, private=True))


async def main():
    middleware = ASGICacheHeadersMiddleware(app, resolver=resolver)
    transport = httpx.ASGITransport(app=middleware)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.get("/employees/1")
        etag = response.headers["etag"]
        print(f"GET: status={response.status_code}, etag={etag}, cache-control={response.headers['cache-control']}")

        response = await client.get("/employees/1", headers={"If-None-Match": etag})
        print(f"Revalidation: status={response.status_code}")

        response = await client.put("/employees/1", json={"id": 1, "name": "Grace"}, headers={"If-Match": etag})
        print(f"Update: status={response.status_code}, etag={response.headers['etag']}")

        response = await client.put("/employees/1", json={"id": 1, "name": "Alan"}, headers={"If-Match": etag})
        print(f"Stale update: status={response.status_code}")

    print(f"processed_requests={processed_requests}")


if __name__ == "__main__":
    asyncio.run(main())
