[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lbcluster"
version = "0.1.0"
description = "A small TCP load balancer with workers, a replicator and a test client"
requires-python = ">=3.10"
dependencies = []
keywords = ["load-balancer", "tcp", "workers", "replication", "distributed"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
lbcluster-balancer = "lbcluster.balancer:main"
lbcluster-replicator = "lbcluster.replicator:main"
lbcluster-worker = "lbcluster.worker:main"
lbcluster-client = "lbcluster.client:main"

[tool.hatch.build.targets.wheel]
packages = ["lbcluster"]

[tool.pytest.ini_options]
addopts = "-ra"
