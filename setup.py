"""
setup.py for package "kraskov_mi"
Pure Python implementation - no compilation required.
"""
from setuptools import setup, find_packages

setup(
    name='kraskov_mi',
    version='1.0.0',
    description="Kraskov-Stogbauer-Grassberger estimators of mutual information between multivariate continuous variables",
    author="Nicolas B. Garnier",
    author_email="nicolas.garnier@ens-lyon.fr",
    package_dir={'': 'src'},
    packages=find_packages('src'),
    python_requires='>=3.8',
    install_requires=[
        'numpy>=1.20',
        'scipy>=1.7',
    ],
    extras_require={
        'dev': ['pytest'],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: BSD License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Information Analysis',
    ],
)
