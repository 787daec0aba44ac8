from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="robomap_py",
    version="0.1.0",
    author="Suhrudh Sarathy",
    author_email="suhrudhsarathy@gmail.com",
    description="Multi-robot sensor aggregation and point cloud mapping server",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    classifiers=[
        "Programming Language :: Python :: 3",
    ],
    zip_safe=False,
    include_package_data=True,
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=["numpy", "scipy", "pyyaml", "websockets>=13.0", "open3d"],
    extras_require={"test": ["pytest"]},
)
