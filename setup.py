import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="exposure-notification-python-reference",
    version="0.0.1",
    author="EPFL",
    description="Exposure Notification key schedule and matching, Python reference implementation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.6",
    install_requires=["pycryptodomex", "scalable-cuckoo-filter"],
    extras_require={"dev": ["black", "flake8", "pre-commit"], "test": ["pytest"]},
)
