from setuptools import setup


setup(
    name="pyvoxstat",
    version="0.1.0",
    description="Sparse voxel grids for scalar point measurements with spatial statistics",
    packages=["pyvoxstat"],
    package_dir={"": "src"},
    zip_safe=False,
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "psutil",
        "scipy",
    ],
    extras_require={
        "docs": [
            "sphinx",
            "sphinx_rtd_theme",
        ],
        "tests": [
            "pytest",
        ],
    },
)
