from setuptools import setup, find_packages

setup(
    name="pyocean",
    version="0.1.0",
    author="Bolding-Bruggeman ApS",
    author_email="jorn@bolding-bruggeman.com",
    license="GPL",
    packages=find_packages(include=["pyocean*"]),
    python_requires=">=3.8",
    install_requires=["numpy", "xarray", "cftime", "mpi4py", "pyyaml"],
    zip_safe=False,
    entry_points={
        "console_scripts": [
            "pyocean-run = pyocean.run:run",
        ],
    },
)
