[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hsmtool"
version = "0.1.0"
description = "Key management helpers for payment HSM work: DES/3DES, KCVs, key components, bitwise block tools, a pooled HSM client and a JSON key store."
requires-python = ">=3.10"
dependencies = [
    "pycryptodome",
]
keywords = ["hsm", "des", "3des", "kcv", "key-management", "payments"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["hsmtool"]

[tool.pytest.ini_options]
addopts = "-ra"
