from setuptools import setup, find_packages
import os

with open('README.md') as f:
    long_description = f.read()

here = os.path.dirname(os.path.abspath(__file__))

version_ns = {}
with open(os.path.join(here, 'simmflow', '_version.py')) as f:
    exec(f.read(), {}, version_ns)

setup(
    name='simmflow',
    version=version_ns['__version__'],
    packages=find_packages(exclude=['tests']),
    py_modules=['simm_batch'],
    license='GPLv3',
    author='shuaib.osman',
    author_email='shuaib.osman@investec.co.za',
    description='Dynamic ISDA SIMM delta sensitivities under a LIBOR market model with AAD',
    long_description=long_description,
    long_description_content_type="text/markdown",
    python_requires='>=3.8',
    install_requires=['numpy>=1.16.1', 'scipy>=1.2.2', 'pandas>=1.0', 'torch>=1.11.0', 'pyparsing>=2.4'],
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'SIMM_Batch = simm_batch:main',
        ]},
    classifiers=['Development Status :: 4 - Beta',
                 'Intended Audience :: Developers',
                 'Intended Audience :: Science/Research',
                 'Programming Language :: Python :: 3'],
)
