from setuptools import find_packages, setup

setup(
    name='subgridwd',
    version='0.1',
    packages=find_packages(include=['subgridwd', 'subgridwd.*']),
    python_requires='>=3.11',
    install_requires=['torch', 'numpy', 'netCDF4', 'numba', 'pydantic>=2'],
    extras_require={
        'triton': ['triton'],
        'test': ['pytest'],
    },
)
