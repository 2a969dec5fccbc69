"""
Genetic Algorithm Engine - Population Manager of the evolver

Evolves a fixed-size population of Candidates with DEAP: tournament
selection, gene-group crossover, bounded mutation, repair and single-elite
elitism. One slot of the first generation is always the live candidate, so
the cycle's best can never be worse than the live baseline.

    Idle → InitPopulation → Evaluate → SelectBreed → (×G) → Finalize → Idle
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging
import random

import numpy as np
from deap import base, creator, tools

from adaptive_optimizer.backtest_simulator import SENTINEL_FITNESS
from adaptive_optimizer.candidate import Candidate, RISK_GENES, WINDOW_GENES, random_genes, repair_genes
from adaptive_optimizer.evolution_config import EvolutionConfig, GeneGroup

_LOG = logging.getLogger(__name__)

# Mutation sigma as a fraction of each gene's range
WINDOW_MUTATION_SCALE = 0.05
RISK_MUTATION_SCALE = 0.15


class GAState(Enum):
    IDLE = "idle"
    INIT_POPULATION = "init_population"
    EVALUATE = "evaluate"
    SELECT_BREED = "select_breed"
    FINALIZE = "finalize"


@dataclass
class EvolutionResult:
    """Outcome of one full GA cycle"""
    best: Candidate
    live_fitness: float
    improved: bool
    generations: int
    evaluations: int
    history: Dict[str, list] = field(default_factory=dict)

    @property
    def improvement_pct(self) -> float:
        if self.live_fitness == 0 or self.live_fitness <= SENTINEL_FITNESS:
            return 0.0
        return (self.best.fitness - self.live_fitness) / abs(self.live_fitness) * 100


def is_significant_improvement(best_fitness: Optional[float], live_fitness: float, margin: float) -> bool:
    """
    True when best beats live by more than `margin` (relative)

    Guards against applying a result that only wins by simulation noise.
    """
    if best_fitness is None:
        return False
    if live_fitness <= SENTINEL_FITNESS:
        return best_fitness > live_fitness
    return best_fitness > live_fitness + margin * abs(live_fitness)


class PopulationManager:
    """
    GA engine for Candidate optimization

    Uses DEAP for the individual type, selection and hall of fame; the
    crossover, mutation and repair operators are specific to the candidate
    layout [short_window, long_window, stop_loss, take_profit].
    """

    def __init__(self, cfg: EvolutionConfig, random_seed: Optional[int] = None):
        """
        Args:
            cfg: Evolution configuration (population, generations, rates, bounds)
            random_seed: Seed for reproducibility
        """
        self.cfg = cfg
        self.state = GAState.IDLE

        if random_seed is not None:
            random.seed(random_seed)
            np.random.seed(random_seed)

        self._setup_deap()

        self.history: Dict[str, list] = {
            'best_fitness': [],
            'avg_fitness': [],
            'population_size': [],
            'best_params': [],
        }

        _LOG.debug(
            f"🧬 PopulationManager: pop={cfg.population_size} gens={cfg.generations} "
            f"cx={cfg.crossover_rate:.0%} mut={cfg.mutation_rate:.0%}"
        )

    def _setup_deap(self):
        """Setup DEAP creator and toolbox"""
        # Cleanup previous definitions (if any)
        if hasattr(creator, "CandidateFitness"):
            del creator.CandidateFitness
        if hasattr(creator, "CandidateIndividual"):
            del creator.CandidateIndividual

        creator.create("CandidateFitness", base.Fitness, weights=(1.0,))
        creator.create("CandidateIndividual", list, fitness=creator.CandidateFitness, generation=0)

        self.toolbox = base.Toolbox()

    def _register_operators(self, fitness_function: Callable[[Candidate], float], live: Candidate):
        active = self.cfg.active_genes
        bounds = self.cfg.bounds

        self.toolbox.register("individual", self._create_individual, live=live, active=active)
        self.toolbox.register("seed", self._seed_individual)
        self.toolbox.register("evaluate", self._evaluate_wrapper, fitness_func=fitness_function)
        self.toolbox.register("select", tools.selTournament, tournsize=self.cfg.tournament_size)
        self.toolbox.register("mate", self._crossover_groups, active=active)
        self.toolbox.register("mutate", self._mutate_bounded, indpb=self.cfg.mutation_rate, active=active)
        self.toolbox.register("repair", self._repair)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run(self, fitness_function: Callable[[Candidate], float], live: Candidate) -> EvolutionResult:
        """
        Run one full cycle: init, G generations of evaluate/select/breed, finalize

        Args:
            fitness_function: Scores a Candidate (higher is better)
            live: Currently active candidate (seeded into generation 0)

        Returns:
            EvolutionResult with the best candidate seen during the cycle
        """
        n = self.cfg.population_size
        self.state = GAState.INIT_POPULATION
        self._register_operators(fitness_function, live)

        population = [self.toolbox.individual() for _ in range(n - 1)]
        live_ind = self.toolbox.seed(live)
        population.append(live_ind)

        hall_of_fame = tools.HallOfFame(1)
        evaluations = 0

        for gen in range(self.cfg.generations + 1):
            self.state = GAState.EVALUATE
            evaluations += self._evaluate_population(population)
            hall_of_fame.update(population)
            self._track(population, gen)

            if gen == self.cfg.generations:
                break

            self.state = GAState.SELECT_BREED
            population = self._next_generation(population, gen + 1)

        self.state = GAState.FINALIZE
        best_ind = hall_of_fame[0]
        best = Candidate.from_genes(
            list(best_ind),
            fitness=best_ind.fitness.values[0],
            generation=best_ind.generation,
        )
        live_fitness = live_ind.fitness.values[0]
        improved = is_significant_improvement(best.fitness, live_fitness, self.cfg.improvement_margin)

        _LOG.info(
            f"✅ GA cycle complete: best {best} vs live {live_fitness:.4f} "
            f"({'significant' if improved else 'no significant'} improvement, {evaluations} evaluations)"
        )

        self.state = GAState.IDLE
        return EvolutionResult(
            best=best,
            live_fitness=live_fitness,
            improved=improved,
            generations=self.cfg.generations,
            evaluations=evaluations,
            history=self.history,
        )

    def _evaluate_population(self, population: List) -> int:
        """Score every individual without a valid fitness"""
        invalid_ind = [ind for ind in population if not ind.fitness.valid]
        fitnesses = list(map(self.toolbox.evaluate, invalid_ind))
        for ind, fit in zip(invalid_ind, fitnesses):
            ind.fitness.values = (fit,)
        return len(invalid_ind)

    def _next_generation(self, population: List, generation: int) -> List:
        """Elite (k=1) + N-1 offspring from tournament-selected parents"""
        elite = self.toolbox.clone(tools.selBest(population, 1)[0])
        offspring = [elite]

        while len(offspring) < len(population):
            parent1 = self.toolbox.select(population, 1)[0]
            parent2 = self.toolbox.select(population, 1)[0]

            if random.random() < self.cfg.crossover_rate:
                source = list(parent1)
                child = self.toolbox.mate(self.toolbox.clone(parent1), self.toolbox.clone(parent2))
            else:
                parent = random.choice((parent1, parent2))
                source = list(parent)
                child = self.toolbox.clone(parent)

            self.toolbox.mutate(child)
            self.toolbox.repair(child)
            # A child identical to its source parent keeps the parent's score
            if list(child) != source:
                del child.fitness.values
                child.generation = generation

            offspring.append(child)

        return offspring

    def _track(self, population: List, gen: int):
        fits = [ind.fitness.values[0] for ind in population]
        best_fit = max(fits)
        best_ind = tools.selBest(population, 1)[0]

        self.history['best_fitness'].append(best_fit)
        self.history['avg_fitness'].append(float(np.mean(fits)))
        self.history['population_size'].append(len(population))
        self.history['best_params'].append(list(best_ind))

        if best_fit <= SENTINEL_FITNESS:
            _LOG.warning(f"⚠️ Generation {gen}: every candidate sentinel-scored")
        else:
            _LOG.info(f"🧬 Generation {gen}/{self.cfg.generations} | Best: {best_fit:.4f} | Avg: {np.mean(fits):.4f}")

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def _create_individual(self, live: Candidate, active: GeneGroup):
        """Random individual; inactive gene groups copied from the live candidate"""
        return creator.CandidateIndividual(random_genes(self.cfg.bounds, base=live, active=active))

    def _seed_individual(self, candidate: Candidate):
        """Exact copy of a candidate (not repaired, so it is judged as it is)"""
        return creator.CandidateIndividual(candidate.to_genes())

    def _evaluate_wrapper(self, individual, fitness_func: Callable[[Candidate], float]) -> float:
        """Individual → Candidate → fitness; failures are sentinel-scored"""
        try:
            candidate = Candidate.from_genes(list(individual))
            return float(fitness_func(candidate))
        except Exception as e:
            _LOG.warning(f"Evaluation failed for {list(individual)}: {e}")
            return SENTINEL_FITNESS

    def _crossover_groups(self, ind1, ind2, active: GeneGroup):
        """
        Gene-group crossover: window genes travel together, risk genes
        travel together. Returns one child built from both parents.
        """
        if GeneGroup.WINDOWS in active and GeneGroup.RISK in active:
            donor_group = random.choice((WINDOW_GENES, RISK_GENES))
            for i in donor_group:
                ind1[i] = ind2[i]
        # With a single active group the other group is identical in both parents
        return ind1

    def _mutate_bounded(self, individual, indpb: float, active: GeneGroup):
        """
        Per-gene mutation

        Window genes move by a small integer step, risk genes by a larger
        gaussian perturbation (relative to their range).
        """
        bounds = self.cfg.bounds
        if GeneGroup.WINDOWS in active:
            for i, gene_range in zip(WINDOW_GENES, (bounds.short_window, bounds.long_window)):
                if random.random() < indpb:
                    sigma = max(1.0, (gene_range[1] - gene_range[0]) * WINDOW_MUTATION_SCALE)
                    step = int(round(random.gauss(0.0, sigma))) or random.choice((-1, 1))
                    individual[i] += step

        if GeneGroup.RISK in active:
            for i, gene_range in zip(RISK_GENES, (bounds.stop_loss, bounds.take_profit)):
                if random.random() < indpb:
                    sigma = (gene_range[1] - gene_range[0]) * RISK_MUTATION_SCALE
                    individual[i] += random.gauss(0.0, sigma)

        return (individual,)

    def _repair(self, individual):
        individual[:] = repair_genes(list(individual), self.cfg.bounds)
        return individual

    def get_history(self) -> dict:
        return self.history
