from setuptools import find_packages, setup

setup(
    name="KEFX",
    version="0.1.0",
    description="Kernel exponential family density estimation with score matching in JAX",  # noqa
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests*"]),
    python_requires=">=3.9",
    install_requires=["jax", "jaxlib", "typing_extensions", "tabulate", "numpy"],
    extras_require={"test": ["pytest"]},
)
