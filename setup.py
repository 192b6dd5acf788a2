from setuptools import setup

# Metadata goes in pyproject.toml.
# These are here for GitHub's dependency graph and help with setuptools support in some environments.
setup(
    name="glustermgmt-py",
    version="0.1.0",
    license="Apache 2 License",
    extras_require={
        "aiohttp": ["aiohttp"],
    },
    packages=["glustermgmt", "glustermgmt.aio", "glustermgmt.protocol"],
    package_data={"glustermgmt": ["py.typed"]},
    zip_safe=True,
)
