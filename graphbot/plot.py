import matplotlib.pyplot as plt
import pandas as pd


def make_plot(plot_filename, plot_y="total_reward", save_path=None):
    plt.figure(figsize=(8, 4))
    df = pd.read_csv(plot_filename)
    y_data = df[plot_y]
    plt.plot(df["episode"], y_data, marker='o', markersize=3)
    plt.xlabel("Episode")
    plt.ylabel(plot_y.replace("_", " ").capitalize())
    plt.title("Reward per Episode")
    plt.grid(True)
    plt.tight_layout()

    if save_path:
        plt.savefig(save_path)
        plt.close() # close figure
    else:
        plt.show()
