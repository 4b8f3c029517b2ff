"""
Topology
========

This module contains the structural hierarchy of the simulated system
(molecules, chains, residues, atoms, and bonds) that is stored in the
molecules block of a TNG file.

The hierarchy is kept in flat lists ("arenas") owned by
:class:`Topology`. Parents hold the indices of their children and
children hold the index of their parent, so no object owns another.
"""

import numpy as np

from .errors import MalformedPayloadError
from .io import BlockID
from .io.block import PayloadBuilder, PayloadParser


class Molecule:
    """
    Molecule type, replicated `count` times in the system.
    """

    def __init__(self, name: str, count: int) -> None:
        self.name = name
        self.count = count
        self.chains = []
        self.atoms = []
        self.bonds = []


class Chain:
    """
    Chain of residues in a molecule.
    """

    def __init__(self, name: str, molecule: int) -> None:
        self.name = name
        self.molecule = molecule
        self.residues = []


class Residue:
    """
    Residue in a chain.
    """

    def __init__(self, name: str, chain: int) -> None:
        self.name = name
        self.chain = chain
        self.atoms = []


class Atom:
    """
    Atom in a residue.
    """

    def __init__(self, name: str, atom_type: str, residue: int) -> None:
        self.name = name
        self.atom_type = atom_type
        self.residue = residue


class Bond:
    """
    Bond between two atoms of the same molecule.
    """

    def __init__(self, atom_1: int, atom_2: int) -> None:
        self.atom_1 = atom_1
        self.atom_2 = atom_2


class Topology:
    """
    Structural hierarchy of a simulated system.

    Examples
    --------
    >>> topology = Topology()
    >>> water = topology.add_molecule("water", count=100)
    >>> residue = topology.add_residue(topology.add_chain(water, "W"), "SOL")
    >>> o, h1, h2 = (topology.add_atom(residue, name, type_)
    ...              for name, type_ in (("OW", "O"), ("HW1", "H"), ("HW2", "H")))
    >>> bonds = [topology.add_bond(o, h1), topology.add_bond(o, h2)]
    >>> topology.n_particles
    300
    """

    def __init__(self) -> None:
        self.molecules = []
        self.chains = []
        self.residues = []
        self.atoms = []
        self.bonds = []

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(n_molecules={self.n_molecules}, "
            f"n_particles={self.n_particles})"
        )

    def add_molecule(self, name: str, count: int = 1) -> int:
        """
        Adds a molecule type.

        Parameters
        ----------
        name : `str`
            Molecule name.

        count : `int`, default: :code:`1`
            Number of copies of the molecule in the system.

        Returns
        -------
        index : `int`
            Index of the new molecule.
        """

        if count < 0:
            raise ValueError(f"Invalid molecule count {count}.")
        self.molecules.append(Molecule(name, count))
        return len(self.molecules) - 1

    def add_chain(self, molecule: int, name: str) -> int:
        """
        Adds a chain to a molecule and returns its index.
        """

        self.chains.append(Chain(name, molecule))
        self.molecules[molecule].chains.append(len(self.chains) - 1)
        return len(self.chains) - 1

    def add_residue(self, chain: int, name: str) -> int:
        """
        Adds a residue to a chain and returns its index.
        """

        self.residues.append(Residue(name, chain))
        self.chains[chain].residues.append(len(self.residues) - 1)
        return len(self.residues) - 1

    def add_atom(self, residue: int, name: str, atom_type: str = "") -> int:
        """
        Adds an atom to a residue and returns its index.
        """

        self.atoms.append(Atom(name, atom_type, residue))
        index = len(self.atoms) - 1
        self.residues[residue].atoms.append(index)
        self.molecules[self.molecule_of(index)].atoms.append(index)
        return index

    def add_bond(self, atom_1: int, atom_2: int) -> int:
        """
        Adds a bond between two atoms of the same molecule and returns
        its index.
        """

        molecule = self.molecule_of(atom_1)
        if molecule != self.molecule_of(atom_2):
            raise ValueError(
                f"Atoms {atom_1} and {atom_2} belong to different molecules."
            )
        self.bonds.append(Bond(atom_1, atom_2))
        self.molecules[molecule].bonds.append(len(self.bonds) - 1)
        return len(self.bonds) - 1

    def molecule_of(self, atom: int) -> int:
        """
        Index of the molecule an atom belongs to.
        """

        return self.chains[self.residues[self.atoms[atom].residue].chain].molecule

    def _ordered_atoms(self, molecule: int) -> list[int]:
        return [
            a
            for c in self.molecules[molecule].chains
            for r in self.chains[c].residues
            for a in self.residues[r].atoms
        ]

    def particle_names(self) -> np.ndarray[str]:
        """
        Atom names in real particle numbering.
        """

        names = []
        for i, molecule in enumerate(self.molecules):
            atoms = [self.atoms[a].name for a in self._ordered_atoms(i)]
            names.extend(atoms * molecule.count)
        return np.array(names, dtype=object)

    @property
    def n_molecules(self) -> int:
        """
        Number of molecules, counting every copy.
        """

        return sum(m.count for m in self.molecules)

    @property
    def n_particles(self) -> int:
        """
        Number of particles, counting every copy of every molecule.
        """

        return sum(m.count * len(m.atoms) for m in self.molecules)

    def to_payload(self, byte_order: str = "<") -> bytes:
        """
        Serializes the topology as a molecules block payload.
        """

        builder = PayloadBuilder(byte_order).int64(len(self.molecules))
        for i, molecule in enumerate(self.molecules):
            builder.string(molecule.name).int64(molecule.count)
            builder.int64(len(molecule.chains))
            for c in molecule.chains:
                chain = self.chains[c]
                builder.string(chain.name).int64(len(chain.residues))
                for r in chain.residues:
                    residue = self.residues[r]
                    builder.string(residue.name).int64(len(residue.atoms))
                    for a in residue.atoms:
                        builder.string(self.atoms[a].name)
                        builder.string(self.atoms[a].atom_type)

            # Bonds refer to atoms by their position in the molecule
            local = {a: k for k, a in enumerate(self._ordered_atoms(i))}
            builder.int64(len(molecule.bonds))
            for b in molecule.bonds:
                bond = self.bonds[b]
                builder.int64(local[bond.atom_1]).int64(local[bond.atom_2])
        return builder.getvalue()

    @classmethod
    def from_payload(cls, payload: bytes, byte_order: str = "<") -> "Topology":
        """
        Deserializes a molecules block payload.
        """

        parser = PayloadParser(payload, byte_order, block_id=BlockID.MOLECULES)
        topology = cls()
        for _ in range(parser.int64()):
            molecule = topology.add_molecule(parser.string(), parser.int64())
            for _ in range(parser.int64()):
                chain = topology.add_chain(molecule, parser.string())
                for _ in range(parser.int64()):
                    residue = topology.add_residue(chain, parser.string())
                    for _ in range(parser.int64()):
                        topology.add_atom(residue, parser.string(), parser.string())
            atoms = topology._ordered_atoms(molecule)
            for _ in range(parser.int64()):
                bond = (parser.int64(), parser.int64())
                if not all(0 <= k < len(atoms) for k in bond):
                    raise MalformedPayloadError(
                        f"Bond {bond} refers to atoms outside of molecule "
                        f"'{topology.molecules[molecule].name}'.",
                        block_id=BlockID.MOLECULES,
                    )
                topology.add_bond(atoms[bond[0]], atoms[bond[1]])
        return topology
