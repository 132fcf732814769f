from setuptools import setup, find_packages

setup(
    name='RollingEgg-Nurture',
    version='0.1',
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    package_data={"nurture": ["tables_default.yaml"]},
    install_requires=[
        "numpy",
        "pyyaml",
        "pydantic>=2",
    ],
    extras_require={
        "test": ["pytest"],
    },
    author='RollingEgg team',
    description='Nurture: growth and evolution economy engine for RollingEgg',
    # long_description=open('README.md').read(),
    # long_description_content_type='text/markdown',
)
