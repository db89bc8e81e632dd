"""
Headless Rocket AI - Agent Evaluation
=====================================

Evaluates a trained DQN checkpoint with greedy actions on one or more
objectives, aggregates the results with pandas and produces CSV, YAML and
plot summaries.

Author: AI Assistant
Date: August 2025
"""

import os
import sys
import logging
import argparse
from typing import Dict, List, Any, Optional

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import seaborn as sns
import yaml
from tqdm import tqdm

# Add rocket_rl to path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from rocket_rl import TrainingConfig, EnvironmentConfig, create_agent, create_environment
from rocket_rl.config import load_environment_config

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class AgentEvaluator:
    """
    Greedy-policy evaluation of a saved agent.
    """

    def __init__(self,
                 slot: str = 'rocket-ai-model',
                 checkpoint_dir: str = 'results/models',
                 objectives: Optional[List[str]] = None,
                 env_config: Optional[EnvironmentConfig] = None,
                 max_steps_per_episode: int = 2000):
        """
        Initialize agent evaluator.

        Args:
            slot: Name of the weight slot to evaluate
            checkpoint_dir: Directory holding the weight slots
            objectives: Objectives to evaluate on
            env_config: Environment configuration
            max_steps_per_episode: Step cap for non-navigate objectives
        """
        self.objectives = list(objectives or ['orbit', 'land', 'explore'])
        self.env_config = env_config
        self.training_config = TrainingConfig(
            objectives=self.objectives,
            checkpoint_slot=slot,
            checkpoint_dir=checkpoint_dir,
            max_steps_per_episode=max_steps_per_episode
        )

        self.agent = create_agent(self.training_config)
        if not self.agent.load(slot):
            raise FileNotFoundError(f"Could not load weight slot '{slot}' from {checkpoint_dir}")

        self.episode_results: List[Dict[str, Any]] = []
        logger.info(f"Agent evaluator initialized with slot '{slot}'")

    def evaluate_episode(self, objective: str, env=None) -> Dict[str, Any]:
        """
        Run one greedy episode.

        Returns:
            Episode metrics
        """
        env = env or create_environment(objective, self.training_config, self.env_config)
        observation, info = env.reset()

        total_reward = 0.0
        steps = 0
        terminated = truncated = False
        while not (terminated or truncated):
            action = self.agent.act(observation, explore=False)
            observation, reward, terminated, truncated, info = env.step(action)
            total_reward += reward
            steps += 1

        return {
            'objective': objective,
            'total_reward': total_reward,
            'steps': steps,
            'status': info.get('status'),
            'mission_success': bool(info.get('mission_success', False)),
            'fuel_remaining': info.get('fuel'),
            'health': info.get('health'),
            'distance_to_target': info.get('distance_to_target'),
        }

    def evaluate(self, episodes_per_objective: int = 10) -> pd.DataFrame:
        """Evaluate every objective and return one row per episode."""
        for objective in self.objectives:
            env = create_environment(objective, self.training_config, self.env_config)
            try:
                for episode in tqdm(range(episodes_per_objective), desc=f"Evaluating {objective}"):
                    result = self.evaluate_episode(objective, env)
                    result['episode'] = episode
                    self.episode_results.append(result)
            finally:
                env.close()

        return pd.DataFrame(self.episode_results)

    def summarize(self, df: pd.DataFrame) -> Dict[str, Any]:
        """Per-objective statistics."""
        summary = {}
        for objective, group in df.groupby('objective'):
            summary[objective] = {
                'episodes': int(len(group)),
                'success_rate': float(group['mission_success'].mean()),
                'reward_mean': float(group['total_reward'].mean()),
                'reward_std': float(group['total_reward'].std(ddof=0)),
                'steps_mean': float(group['steps'].mean()),
                'status_counts': {str(k): int(v) for k, v in group['status'].value_counts().items()},
            }
        return summary

    def save_results(self, df: pd.DataFrame, summary: Dict[str, Any], output_dir: str = 'results'):
        csv_dir = os.path.join(output_dir, 'csv_logs')
        os.makedirs(csv_dir, exist_ok=True)

        df.to_csv(os.path.join(csv_dir, 'evaluation_episodes.csv'), index=False)
        with open(os.path.join(csv_dir, 'evaluation_summary.yaml'), 'w') as f:
            yaml.dump(summary, f, default_flow_style=False)

        logger.info("Evaluation results saved to CSV and YAML files")

    def plot_results(self, df: pd.DataFrame, save_path: str):
        """Reward distribution and outcome counts per objective."""
        if df.empty:
            return

        sns.set_style('whitegrid')
        fig, axes = plt.subplots(1, 2, figsize=(14, 5))

        sns.boxplot(data=df, x='objective', y='total_reward', ax=axes[0])
        axes[0].set_title('Episode Reward by Objective')
        axes[0].set_xlabel('Objective')
        axes[0].set_ylabel('Total Reward')

        sns.countplot(data=df, x='objective', hue='status', ax=axes[1])
        axes[1].set_title('Episode Outcomes')
        axes[1].set_xlabel('Objective')
        axes[1].set_ylabel('Episodes')

        plt.tight_layout()
        os.makedirs(os.path.dirname(save_path) or '.', exist_ok=True)
        plt.savefig(save_path, dpi=150, bbox_inches='tight')
        plt.close(fig)
        logger.info(f"Evaluation plots saved to {save_path}")


def main():
    """Main evaluation function."""
    parser = argparse.ArgumentParser(description='Evaluate a trained headless rocket agent')
    parser.add_argument('--slot', type=str, default='rocket-ai-model',
                        help='Weight slot to evaluate')
    parser.add_argument('--checkpoint-dir', type=str, default='results/models',
                        help='Directory holding weight slots')
    parser.add_argument('--objectives', type=str, nargs='+', default=['orbit', 'land', 'explore'],
                        help='Objectives to evaluate')
    parser.add_argument('--episodes', type=int, default=10,
                        help='Episodes per objective')
    parser.add_argument('--env-config', type=str, default=None,
                        help='Path to environment configuration')
    parser.add_argument('--output-dir', type=str, default='results',
                        help='Directory for CSV, YAML and plots')
    parser.add_argument('--seed', type=int, default=0,
                        help='Random seed')

    args = parser.parse_args()
    np.random.seed(args.seed)

    try:
        env_config = load_environment_config(args.env_config) if args.env_config else None
        evaluator = AgentEvaluator(args.slot, args.checkpoint_dir, args.objectives, env_config)

        df = evaluator.evaluate(args.episodes)
        summary = evaluator.summarize(df)
        evaluator.save_results(df, summary, args.output_dir)
        evaluator.plot_results(df, os.path.join(args.output_dir, 'plots', 'evaluation_summary.png'))

        print("\n" + "=" * 50)
        print("EVALUATION RESULTS")
        print("=" * 50)
        for objective, stats in summary.items():
            print(f"{objective}: {stats['success_rate']:.2%} success, "
                  f"reward {stats['reward_mean']:.2f} ± {stats['reward_std']:.2f}")

        logger.info("Evaluation completed successfully!")

    except Exception as e:
        logger.error(f"Evaluation failed: {e}")
        raise


if __name__ == "__main__":
    main()
